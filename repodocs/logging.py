"""Logging utilities for repodocs commands and pipeline runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, List, Optional

_ROOT = "repodocs"
_CONSOLE_FORMAT = "[repodocs] %(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``repodocs`` or one of its children, e.g. ``repodocs.planner``."""
    return logging.getLogger(f"{_ROOT}.{name}" if name else _ROOT)


def _with_format(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return handler


def configure_logging(*, verbose: bool = False, log_file: Path | None = None) -> logging.Logger:
    """Send repodocs logs to stderr, plus ``log_file`` when given.

    Calling it again replaces the handlers installed by the previous call.
    """
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [_with_format(logging.StreamHandler(), level, _CONSOLE_FORMAT)]
    if log_file is not None:
        handlers.append(_with_format(logging.FileHandler(log_file, encoding="utf-8"), level, _FILE_FORMAT))

    logger = get_logger()
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


@dataclass(frozen=True)
class LogEvent:
    """A single progress event emitted during a pipeline run."""

    level: str
    message: str
    timestamp: str

    def as_dict(self) -> dict[str, str]:
        return {"level": self.level, "message": self.message, "timestamp": self.timestamp}


class ProgressLog:
    """Buffers run progress events and optionally pushes them to a live listener.

    Every event is also forwarded to the standard logger so CLI runs and service
    runs produce the same log output.
    """

    def __init__(
        self,
        listener: Optional[Callable[[LogEvent], None]] = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._listener = listener
        self._logger = logger or get_logger("orchestrator")
        self._events: List[LogEvent] = []

    @property
    def events(self) -> List[LogEvent]:
        return list(self._events)

    def info(self, message: str, *args: object) -> None:
        self._emit("info", logging.INFO, message, args)

    def error(self, message: str, *args: object) -> None:
        self._emit("error", logging.ERROR, message, args)

    def _emit(self, level: str, level_no: int, message: str, args: tuple[object, ...]) -> None:
        text = message % args if args else message
        self._logger.log(level_no, text)
        event = LogEvent(
            level=level,
            message=text,
            timestamp=datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        )
        self._events.append(event)
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception as exc:  # listeners are observability only
            self._logger.debug("Progress listener failed: %s", exc)


__all__ = ["LogEvent", "ProgressLog", "configure_logging", "get_logger"]
