"""Completion adapter for the llama.cpp CLI."""

from __future__ import annotations

import asyncio
import subprocess
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import CompletionError
from .runner import Completion, to_completion

ProcessRunner = Callable[[List[str]], str]


def resolve_model_file(model_path: str) -> Path:
    path = Path(model_path).expanduser().resolve()
    if not path.is_file():
        reason = "must be a file" if path.exists() else "not found"
        raise CompletionError(f"llama.cpp model {reason}: {path}")
    return path


class LlamaCppRunner:
    """Executes prompts with a local GGUF model through the llama.cpp binary.

    The process serves exactly one model file, so ``model_hint`` is ignored and
    completions report the model file name.
    """

    def __init__(
        self,
        *,
        model_path: str,
        executable: str | None = None,
        temperature: Optional[float] = 0.2,
        max_tokens: Optional[int] = None,
        request_timeout: Optional[float] = None,
        runner: ProcessRunner | None = None,
    ) -> None:
        self.model_path = resolve_model_file(model_path)
        self.executable = executable or "llama-cli"
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout
        self._runner = runner or self._spawn

    async def complete(
        self, prompt: str, model_hint: str | None = None, *, system: str | None = None
    ) -> Completion:
        text = f"{system.strip()}\n\n{prompt}" if system else prompt
        args = [self.executable, "-m", str(self.model_path), "-p", text]
        if self.temperature is not None:
            args += ["--temp", str(self.temperature)]
        if self.max_tokens is not None:
            args += ["-n", str(self.max_tokens)]

        output = await asyncio.get_running_loop().run_in_executor(None, partial(self._runner, args))
        if not (output or "").strip():
            raise CompletionError("llama.cpp returned no output")
        return to_completion(output, prompt=text, model=self.model_path.name)

    def _spawn(self, args: List[str]) -> str:
        try:
            completed = subprocess.run(
                args, check=True, capture_output=True, text=True, timeout=self.request_timeout
            )
        except FileNotFoundError as exc:  # pragma: no cover - environment dependent
            raise CompletionError(f"llama.cpp executable '{self.executable}' was not found") from exc
        except subprocess.TimeoutExpired as exc:  # pragma: no cover - environment dependent
            raise CompletionError(f"llama.cpp timed out after {exc.timeout}s") from exc
        except subprocess.CalledProcessError as exc:  # pragma: no cover - environment dependent
            detail = exc.stderr.strip() or exc.stdout.strip() or f"exit code {exc.returncode}"
            raise CompletionError(f"llama.cpp failed: {detail}") from exc
        return completed.stdout.strip()


__all__ = ["LlamaCppRunner", "resolve_model_file"]
