"""Expiring cache of assembled context windows."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ..models import ContextWindow

_FORMAT_VERSION = 1


@dataclass
class _Entry:
    repository_id: str
    window: Dict[str, Any]
    expires_at: datetime

    def to_json(self) -> Dict[str, Any]:
        stamp = self.expires_at.astimezone(UTC).isoformat().replace("+00:00", "Z")
        return {"repository_id": self.repository_id, "window": self.window, "expires_at": stamp}

    @classmethod
    def from_json(cls, raw: Any) -> Optional["_Entry"]:
        if not isinstance(raw, Mapping):
            return None
        repository_id, window, stamp = raw.get("repository_id"), raw.get("window"), raw.get("expires_at")
        if not isinstance(repository_id, str) or not isinstance(window, dict) or not isinstance(stamp, str):
            return None
        try:
            expires_at = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        except ValueError:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        return cls(repository_id, window, expires_at)


class ContextCache:
    """Context windows keyed by cache key, scoped to a repository, valid until they expire.

    With a ``path`` the cache survives restarts as a small JSON file; a missing,
    unreadable or foreign file starts the cache empty. Writes only happen on
    :meth:`persist` and only when something changed.
    """

    def __init__(self, path: Path | None = None, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = path
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: Dict[str, _Entry] = self._read(path) if path is not None else {}
        self._changed = False

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, repository_id: str, cache_key: str) -> Optional[ContextWindow]:
        entry = self._entries.get(cache_key)
        if entry is None or entry.repository_id != repository_id:
            return None
        if entry.expires_at <= self._clock():
            self._remove([cache_key])
            return None
        return ContextWindow.from_dict(entry.window)

    def store(self, repository_id: str, cache_key: str, window: ContextWindow, *, expires_at: datetime) -> None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=UTC)
        self._entries[cache_key] = _Entry(repository_id, window.as_dict(), expires_at)
        self._changed = True

    def clear_expired(self) -> int:
        now = self._clock()
        return self._remove([key for key, entry in self._entries.items() if entry.expires_at <= now])

    def clear_repository(self, repository_id: str) -> int:
        return self._remove(
            [key for key, entry in self._entries.items() if entry.repository_id == repository_id]
        )

    def persist(self) -> None:
        if self._path is None or not self._changed:
            return
        document = {
            "version": _FORMAT_VERSION,
            "entries": {key: entry.to_json() for key, entry in self._entries.items()},
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        self._changed = False

    def _remove(self, keys: list[str]) -> int:
        for key in keys:
            del self._entries[key]
        self._changed = self._changed or bool(keys)
        return len(keys)

    @staticmethod
    def _read(path: Path) -> Dict[str, _Entry]:
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(document, dict) or document.get("version") != _FORMAT_VERSION:
            return {}
        raw_entries = document.get("entries")
        if not isinstance(raw_entries, dict):
            return {}
        entries: Dict[str, _Entry] = {}
        for key, raw in raw_entries.items():
            entry = _Entry.from_json(raw)
            if entry is not None:
                entries[str(key)] = entry
        return entries


__all__ = ["ContextCache"]
