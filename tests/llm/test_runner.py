"""Tests for the local LLM runner."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from repodocs.config import LLMConfig
from repodocs.errors import CompletionError
from repodocs.llm import LLMReply, LLMRunner, LlamaCppRunner, build_completion_adapter
from repodocs.llm.runner import is_local_host, parse_chat_response, to_completion


def test_llm_runner_constructs_request() -> None:
    captured = {}

    def fake_runner(request):
        captured["prompt"] = request.prompt
        captured["system"] = request.system
        captured["model"] = request.model
        captured["temperature"] = request.temperature
        captured["max_tokens"] = request.max_tokens
        captured["executable"] = request.executable
        captured["base_url"] = request.base_url
        captured["api_key"] = request.api_key
        captured["request_timeout"] = request.request_timeout
        return "  response  "

    runner = LLMRunner(
        model="custom-model",
        base_url=None,
        executable="ollama",
        temperature=0.15,
        max_tokens=256,
        api_key=None,
        request_timeout=42.0,
        runner=fake_runner,
    )
    completion = asyncio.run(runner.complete("Hello world", system="system message"))

    assert completion.text == "response"
    assert completion.model == "custom-model"
    assert completion.tokens_in == 7
    assert completion.tokens_out == 2
    assert completion.cost_estimate == 0.0
    assert captured == {
        "prompt": "Hello world",
        "system": "system message",
        "model": "custom-model",
        "temperature": 0.15,
        "max_tokens": 256,
        "executable": "ollama",
        "base_url": None,
        "api_key": None,
        "request_timeout": 42.0,
    }


def test_model_hint_overrides_configured_model() -> None:
    seen = []

    def fake_runner(request):
        seen.append(request.model)
        return "ok"

    runner = LLMRunner(model="default-model", base_url=None, runner=fake_runner)
    completion = asyncio.run(runner.complete("prompt", "hinted-model"))

    assert seen == ["hinted-model"]
    assert completion.model == "hinted-model"


def test_runner_failures_surface_as_completion_errors() -> None:
    def broken_runner(request):
        raise RuntimeError("connection reset")

    runner = LLMRunner(model="m", base_url=None, runner=broken_runner)

    with pytest.raises(CompletionError, match="connection reset"):
        asyncio.run(runner.complete("prompt"))


def test_llm_runner_http_posts_payload(monkeypatch) -> None:
    captured = {}

    class FakeResponse:
        def __init__(self, payload):
            self._payload = payload

        def read(self):
            return json.dumps(self._payload).encode("utf-8")

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

    def fake_urlopen(request, timeout=None):
        captured["url"] = request.full_url
        captured["headers"] = {k.lower(): v for k, v in request.header_items()}
        captured["payload"] = json.loads(request.data.decode("utf-8"))
        captured["timeout"] = timeout
        return FakeResponse(
            {
                "choices": [{"message": {"content": "Whales are mammals."}}],
                "usage": {"prompt_tokens": 30, "completion_tokens": 6},
            }
        )

    monkeypatch.setattr("repodocs.llm.runner.urlopen", fake_urlopen)

    runner = LLMRunner(
        model="ai/smollm2:360M-Q4_K_M",
        base_url="http://localhost:12434/engines/v1/",
        api_key="local-key",
        temperature=0.05,
        max_tokens=128,
        request_timeout=25.0,
        input_cost_per_1k=1.0,
        output_cost_per_1k=2.0,
    )
    completion = asyncio.run(
        runner.complete("Give me a fact about whales.", system="Act like a marine biologist.")
    )

    assert completion.text == "Whales are mammals."
    assert (completion.tokens_in, completion.tokens_out) == (30, 6)
    assert completion.cost_estimate == pytest.approx(0.042)
    assert captured["url"] == "http://localhost:12434/engines/v1/chat/completions"
    headers = captured["headers"]
    assert headers["content-type"] == "application/json"
    assert headers["authorization"] == "Bearer local-key"
    payload = captured["payload"]
    assert payload["model"] == "ai/smollm2:360M-Q4_K_M"
    assert payload["messages"][0] == {"role": "system", "content": "Act like a marine biologist."}
    assert payload["messages"][1] == {"role": "user", "content": "Give me a fact about whales."}
    assert payload["temperature"] == 0.05
    assert payload["max_tokens"] == 128
    assert captured["timeout"] == 25.0


def test_http_runner_rejects_empty_choices(monkeypatch) -> None:
    class FakeResponse:
        def read(self):
            return b'{"choices": []}'

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr("repodocs.llm.runner.urlopen", lambda request, timeout=None: FakeResponse())
    runner = LLMRunner(model="m", base_url="http://127.0.0.1:8080/v1", api_key=None)

    with pytest.raises(CompletionError, match="empty response"):
        asyncio.run(runner.complete("prompt"))


def test_remote_base_urls_are_rejected() -> None:
    with pytest.raises(CompletionError, match="not permitted"):
        LLMRunner(model="m", base_url="https://api.example.com/v1")


def test_private_network_hosts_are_allowed() -> None:
    runner = LLMRunner(model="m", base_url="http://192.168.1.20:11434/v1/", api_key=None)

    assert runner.base_url == "http://192.168.1.20:11434/v1"


def test_environment_supplies_defaults(monkeypatch) -> None:
    monkeypatch.setenv("REPODOCS_LLM_MODEL", "env-model")
    monkeypatch.setenv("REPODOCS_LLM_BASE_URL", "http://localhost:9999/v1")
    monkeypatch.setenv("REPODOCS_LLM_API_KEY", "env-key")

    runner = LLMRunner()

    assert runner.model == "env-model"
    assert runner.base_url == "http://localhost:9999/v1"
    assert runner.api_key == "env-key"


def test_to_completion_prefers_reported_usage() -> None:
    completion = to_completion(
        LLMReply(text=" text ", tokens_in=1000, tokens_out=500),
        prompt="ignored",
        model="m",
        input_cost_per_1k=0.5,
        output_cost_per_1k=1.5,
    )

    assert completion.text == "text"
    assert completion.cost_estimate == pytest.approx(1.25)


def test_build_completion_adapter_selects_runtime(tmp_path: Path) -> None:
    model = tmp_path / "models" / "tiny.gguf"
    model.parent.mkdir()
    model.write_text("weights", encoding="utf-8")

    llama = build_completion_adapter(LLMConfig(runner="llama.cpp", model="models/tiny.gguf"), tmp_path)
    ollama = build_completion_adapter(LLMConfig(runner="ollama", model="llama3"), tmp_path)
    http = build_completion_adapter(
        LLMConfig(runner="http", model="m", base_url="http://localhost:12434/engines/v1", api_key="k"),
        tmp_path,
    )

    assert isinstance(llama, LlamaCppRunner)
    assert llama.model_path == model.resolve()
    assert isinstance(ollama, LLMRunner) and ollama.base_url is None
    assert ollama.executable == "ollama"
    assert isinstance(http, LLMRunner) and http.base_url == "http://localhost:12434/engines/v1"


def test_llamacpp_adapter_requires_model(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="model"):
        build_completion_adapter(LLMConfig(runner="llamacpp"), tmp_path)


def test_parse_chat_response_reads_legacy_text_choices() -> None:
    reply = parse_chat_response({"choices": [{"text": " plain text "}], "usage": {"prompt_tokens": "n/a"}})

    assert reply == LLMReply(text="plain text", tokens_in=None, tokens_out=None)


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("localhost", True),
        ("127.0.0.1", True),
        ("10.0.0.5", True),
        ("devbox.local", True),
        ("model-runner.docker.internal", True),
        ("8.8.8.8", False),
        ("api.example.com", False),
    ],
)
def test_is_local_host(host: str, expected: bool) -> None:
    assert is_local_host(host) is expected
