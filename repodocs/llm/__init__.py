"""Completion adapters for local model runtimes."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..config import LLMConfig
from .llamacpp import LlamaCppRunner
from .runner import Completion, LLMReply, LLMRequest, LLMRunner

_LLAMACPP_NAMES = {"llama.cpp", "llamacpp"}
_PASSTHROUGH = ("model", "base_url", "temperature", "max_tokens", "api_key", "request_timeout")


class CompletionAdapter(Protocol):
    async def complete(
        self, prompt: str, model_hint: str | None = None, *, system: str | None = None
    ) -> Completion:
        ...


def build_completion_adapter(llm_cfg: Optional[LLMConfig], root: Path) -> CompletionAdapter:
    """Create the adapter described by the ``llm`` block of ``.repodocs.yml``.

    ``llama.cpp`` needs a model file (relative paths resolve against ``root``).
    ``ollama`` without a ``base_url`` shells out to the CLI; everything else talks
    to an OpenAI-compatible endpoint.
    """
    cfg = llm_cfg or LLMConfig()
    runtime = (cfg.runner or "").lower()

    if runtime in _LLAMACPP_NAMES:
        if not cfg.model:
            raise ValueError("llama.cpp runner requires `model` to be configured in .repodocs.yml")
        model_path = Path(cfg.model).expanduser()
        return LlamaCppRunner(
            model_path=str(model_path if model_path.is_absolute() else root / model_path),
            executable=cfg.executable,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            request_timeout=cfg.request_timeout,
        )

    options: Dict[str, Any] = {
        name: getattr(cfg, name) for name in _PASSTHROUGH if getattr(cfg, name) is not None
    }
    if runtime == "ollama":
        options.setdefault("base_url", None)
    executable = cfg.executable or (cfg.runner if runtime not in {"", "http"} else None)
    if executable:
        options["executable"] = executable
    return LLMRunner(
        input_cost_per_1k=cfg.input_cost_per_1k,
        output_cost_per_1k=cfg.output_cost_per_1k,
        **options,
    )


__all__ = [
    "Completion",
    "CompletionAdapter",
    "LLMReply",
    "LLMRequest",
    "LLMRunner",
    "LlamaCppRunner",
    "build_completion_adapter",
]
