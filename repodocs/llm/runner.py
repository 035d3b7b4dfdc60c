"""Completion adapters around local model runtimes (Model Runner / Ollama)."""

from __future__ import annotations

import asyncio
import ipaddress
import json
import math
import os
import subprocess
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from ..errors import CompletionError
from ..logging import get_logger

_UNSET: Any = object()

DEFAULT_MODEL = "ai/smollm2:360M-Q4_K_M"
DEFAULT_BASE_URL = "http://localhost:12434/engines/v1"
DEFAULT_TIMEOUT = 60.0

_LOCAL_HOSTNAMES = frozenset({"localhost", "model-runner.docker.internal"})
_LOCAL_SUFFIXES = (".local", ".localdomain", ".internal")


@dataclass
class LLMRequest:
    """Represents one inference request for the configured runtime."""

    prompt: str
    system: Optional[str]
    model: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    executable: Optional[str]
    base_url: Optional[str]
    api_key: Optional[str]
    request_timeout: Optional[float]


@dataclass
class LLMReply:
    """Raw runtime output; token counts are ``None`` when the runtime omits usage."""

    text: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None


@dataclass
class Completion:
    """What a completion adapter hands back to the generator."""

    text: str
    tokens_in: int
    tokens_out: int
    cost_estimate: float
    model: str


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def to_completion(
    reply: LLMReply | str,
    *,
    prompt: str,
    model: str,
    input_cost_per_1k: float = 0.0,
    output_cost_per_1k: float = 0.0,
) -> Completion:
    """Fill in missing usage with a chars/4 estimate and price the call."""
    if isinstance(reply, str):
        reply = LLMReply(text=reply)
    text = (reply.text or "").strip()
    tokens_in = estimate_tokens(prompt) if reply.tokens_in is None else reply.tokens_in
    tokens_out = estimate_tokens(text) if reply.tokens_out is None else reply.tokens_out
    cost = (tokens_in * input_cost_per_1k + tokens_out * output_cost_per_1k) / 1000
    return Completion(text, tokens_in, tokens_out, round(cost, 6), model)


def is_local_host(host: str) -> bool:
    """True for loopback, private-network and well-known local runtime hosts."""
    host = host.lower()
    if host in _LOCAL_HOSTNAMES or host.endswith(_LOCAL_SUFFIXES):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_unspecified


def ensure_local_url(url: str) -> str:
    """Strip trailing slashes; raise :class:`CompletionError` for hosted endpoints."""
    cleaned = url.rstrip("/")
    host = urlparse(cleaned).hostname
    if host is not None and not is_local_host(host):
        raise CompletionError(
            f"Remote base_url '{url}' is not permitted. Configure a local model runner."
        )
    return cleaned


def chat_payload(request: LLMRequest) -> Dict[str, Any]:
    messages: List[Dict[str, str]] = []
    if request.system:
        messages.append({"role": "system", "content": request.system})
    messages.append({"role": "user", "content": request.prompt})
    payload: Dict[str, Any] = {"model": request.model, "messages": messages}
    if request.temperature is not None:
        payload["temperature"] = request.temperature
    if request.max_tokens is not None:
        payload["max_tokens"] = request.max_tokens
    return payload


def parse_chat_response(payload: Mapping[str, Any]) -> LLMReply:
    """Read the first choice (chat or legacy text form) and the usage block."""
    choices = payload.get("choices")
    first = choices[0] if isinstance(choices, list) and choices else {}
    text = ""
    if isinstance(first, Mapping):
        message = first.get("message")
        if isinstance(message, Mapping) and isinstance(message.get("content"), str):
            text = message["content"]
        elif isinstance(first.get("text"), str):
            text = first["text"]
    if not text.strip():
        raise CompletionError("LLM HTTP runner returned an empty response")

    usage = payload.get("usage")
    usage = usage if isinstance(usage, Mapping) else {}
    prompt_tokens = usage.get("prompt_tokens")
    completion_tokens = usage.get("completion_tokens")
    return LLMReply(
        text=text.strip(),
        tokens_in=prompt_tokens if isinstance(prompt_tokens, int) else None,
        tokens_out=completion_tokens if isinstance(completion_tokens, int) else None,
    )


def http_chat(request: LLMRequest) -> LLMReply:
    """POST to ``{base_url}/chat/completions`` on an OpenAI-compatible runtime."""
    if not request.base_url:
        raise CompletionError("HTTP runner requires a base_url to be configured.")
    headers = {"Content-Type": "application/json"}
    if request.api_key:
        headers["Authorization"] = f"Bearer {request.api_key}"
    http_request = Request(
        f"{request.base_url}/chat/completions",
        data=json.dumps(chat_payload(request)).encode("utf-8"),
        headers=headers,
        method="POST",
    )
    try:
        with urlopen(http_request, timeout=request.request_timeout or DEFAULT_TIMEOUT) as response:
            body = response.read()
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="ignore").strip() or exc.reason
        raise CompletionError(f"LLM HTTP runner failed with status {exc.code}: {detail}") from exc
    except URLError as exc:
        raise CompletionError(f"LLM HTTP runner failed: {exc.reason}") from exc

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CompletionError("LLM HTTP runner returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise CompletionError("LLM HTTP runner returned an unexpected payload")
    return parse_chat_response(payload)


def ollama_run(request: LLMRequest) -> LLMReply:
    """Run ``ollama run <model>`` and read the reply from stdout."""
    executable = request.executable or "ollama"
    args = [executable, "run", request.model]
    if request.system:
        args += ["--system", request.system]
    if request.temperature is not None:
        args += ["--temperature", str(request.temperature)]
    if request.max_tokens is not None:
        args += ["--num-predict", str(request.max_tokens)]
    args.append(request.prompt)
    try:
        completed = subprocess.run(
            args, check=True, capture_output=True, text=True, timeout=request.request_timeout
        )
    except FileNotFoundError as exc:  # pragma: no cover - depends on environment
        raise CompletionError(
            f"Unable to locate '{executable}'. Install Ollama or configure a base_url."
        ) from exc
    except subprocess.TimeoutExpired as exc:  # pragma: no cover - depends on environment
        raise CompletionError(f"Ollama timed out after {exc.timeout}s") from exc
    except subprocess.CalledProcessError as exc:  # pragma: no cover - depends on environment
        raise CompletionError(f"Ollama exited with code {exc.returncode}: {exc.stderr.strip()}") from exc
    return LLMReply(text=completed.stdout.strip())


def _first_env(keys: Sequence[str]) -> str | None:
    return next((os.environ[key] for key in keys if os.environ.get(key)), None)


class LLMRunner:
    """Sends prompts to an OpenAI-compatible local endpoint or the Ollama CLI.

    ``base_url=None`` selects the Ollama CLI. Leaving ``base_url`` or ``api_key``
    unset reads them from the environment, then falls back to the Docker Model
    Runner defaults. Only local or private-network endpoints are accepted.
    """

    ENV_MODEL_KEYS = ("REPODOCS_LLM_MODEL", "OPENAI_MODEL")
    ENV_BASE_URL_KEYS = ("REPODOCS_LLM_BASE_URL", "OPENAI_BASE_URL")
    ENV_API_KEY_KEYS = ("REPODOCS_LLM_API_KEY", "OPENAI_API_KEY")

    def __init__(
        self,
        model: str | None = None,
        *,
        base_url: str | None = _UNSET,
        executable: str = "ollama",
        temperature: Optional[float] = 0.2,
        max_tokens: Optional[int] = None,
        api_key: str | None = _UNSET,
        request_timeout: Optional[float] = DEFAULT_TIMEOUT,
        input_cost_per_1k: float = 0.0,
        output_cost_per_1k: float = 0.0,
        runner: Callable[[LLMRequest], LLMReply | str] | None = None,
    ) -> None:
        self.model = model or _first_env(self.ENV_MODEL_KEYS) or DEFAULT_MODEL
        if base_url is _UNSET:
            base_url = _first_env(self.ENV_BASE_URL_KEYS) or DEFAULT_BASE_URL
        self.base_url = ensure_local_url(base_url) if base_url else None
        self.api_key = _first_env(self.ENV_API_KEY_KEYS) if api_key is _UNSET else api_key
        self.executable = executable
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout
        self.input_cost_per_1k = input_cost_per_1k
        self.output_cost_per_1k = output_cost_per_1k
        self.logger = get_logger("llm.runner")
        self._runner = runner or (http_chat if self.base_url else ollama_run)

    async def complete(
        self, prompt: str, model_hint: str | None = None, *, system: str | None = None
    ) -> Completion:
        """Run one completion in the default executor; a single attempt, no retries."""
        request = LLMRequest(
            prompt=prompt,
            system=system,
            model=model_hint or self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            executable=self.executable,
            base_url=self.base_url,
            api_key=self.api_key,
            request_timeout=self.request_timeout,
        )
        loop = asyncio.get_running_loop()
        reply = await loop.run_in_executor(None, partial(self._invoke, request))
        return to_completion(
            reply,
            prompt=f"{system}\n\n{prompt}" if system else prompt,
            model=request.model,
            input_cost_per_1k=self.input_cost_per_1k,
            output_cost_per_1k=self.output_cost_per_1k,
        )

    def _invoke(self, request: LLMRequest) -> LLMReply | str:
        self.logger.debug("Requesting %s from %s", request.model, request.base_url or request.executable)
        try:
            return self._runner(request)
        except CompletionError:
            raise
        except Exception as exc:
            raise CompletionError(f"LLM runner failed: {exc}") from exc


__all__ = [
    "Completion",
    "LLMReply",
    "LLMRequest",
    "LLMRunner",
    "chat_payload",
    "ensure_local_url",
    "estimate_tokens",
    "is_local_host",
    "parse_chat_response",
    "to_completion",
]
