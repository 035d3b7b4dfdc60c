"""Ignore rules applied while listing repository files."""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterable, List, Sequence

BINARY_EXTENSIONS = frozenset(
    {
        # images
        "png", "jpg", "jpeg", "gif", "bmp", "svg", "ico", "webp", "tiff", "tif",
        # video and audio
        "mp4", "avi", "mov", "wmv", "flv", "webm", "mkv", "3gp",
        "mp3", "wav", "flac", "aac", "ogg", "wma", "m4a",
        # archives and executables
        "zip", "rar", "7z", "tar", "gz", "bz2", "xz", "dmg", "iso",
        "exe", "dll", "so", "dylib", "app", "deb", "rpm", "msi",
        # fonts and office documents
        "ttf", "otf", "woff", "woff2", "eot",
        "doc", "docx", "xls", "xlsx", "ppt", "pptx", "pdf",
        # compiled output
        "class", "jar", "war", "ear", "pyc", "pyo", "o", "obj", "lib", "a",
        # editor and scratch files
        "tmp", "temp", "bak", "swp", "swo", "iml", "ipr", "iws",
        # data blobs
        "bin", "dat", "db", "sqlite", "sqlite3",
    }
)

FALLBACK_PATTERNS = (
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    "__pycache__/",
    ".DS_Store",
    "Thumbs.db",
)

_ALWAYS_SKIPPED_DIRS = {".git", ".repodocs"}


@dataclass(frozen=True)
class IgnorePattern:
    """A single ``.gitignore``-style entry.

    Negated entries are kept so callers can see them, but they never match.
    """

    raw: str
    pattern: str
    directory_only: bool
    negate: bool
    is_glob: bool = False

    def matches(self, rel_path: str) -> bool:
        if self.negate or not self.pattern:
            return False

        if self.directory_only:
            prefix = f"{self.pattern}/"
            return rel_path.startswith(prefix) or f"/{prefix}" in f"/{rel_path}"

        if self.is_glob:
            basename = rel_path.rsplit("/", 1)[-1]
            return fnmatchcase(rel_path, self.pattern) or fnmatchcase(basename, self.pattern)

        if rel_path == self.pattern or rel_path.endswith(f"/{self.pattern}"):
            return True
        if rel_path.startswith(f"{self.pattern}/") or f"/{self.pattern}/" in f"/{rel_path}":
            return True
        return rel_path.rsplit("/", 1)[-1] == self.pattern


def parse_pattern(raw: str) -> IgnorePattern | None:
    line = raw.strip()
    if not line or line.startswith("#"):
        return None

    negate = line.startswith("!")
    if negate:
        line = line[1:]
    if line.startswith("/"):
        line = line[1:]

    directory_only = line.endswith("/")
    if directory_only:
        line = line.rstrip("/")

    is_glob = not directory_only and ("*" in line or "?" in line)

    return IgnorePattern(
        raw=raw.strip(),
        pattern=line,
        directory_only=directory_only,
        negate=negate,
        is_glob=is_glob,
    )


def is_binary_path(rel_path: str) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    if "." not in name:
        return False
    return name.rsplit(".", 1)[-1].lower() in BINARY_EXTENSIONS


class IgnoreChecker:
    """Decides which repository paths are skipped during discovery."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self.patterns: List[IgnorePattern] = []
        for raw in patterns:
            parsed = parse_pattern(raw)
            if parsed is not None:
                self.patterns.append(parsed)

    @classmethod
    def for_root(cls, root: Path, extra_patterns: Sequence[str] = ()) -> "IgnoreChecker":
        """Load ``.gitignore`` from ``root`` (or the fallback set) plus ``extra_patterns``."""
        gitignore = root / ".gitignore"
        try:
            lines = gitignore.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            lines = list(FALLBACK_PATTERNS)
        except (OSError, UnicodeDecodeError):
            lines = list(FALLBACK_PATTERNS)
        return cls([*lines, *extra_patterns])

    def is_ignored(self, rel_path: str) -> bool:
        rel_path = rel_path.lstrip("/")
        if is_binary_path(rel_path):
            return True
        return any(pattern.matches(rel_path) for pattern in self.patterns)

    def skip_directory(self, rel_dir: str) -> bool:
        name = rel_dir.rsplit("/", 1)[-1]
        if name in _ALWAYS_SKIPPED_DIRS:
            return True
        probe = f"{rel_dir}/"
        return any(
            pattern.directory_only and pattern.matches(probe) for pattern in self.patterns
        )


__all__ = [
    "BINARY_EXTENSIONS",
    "FALLBACK_PATTERNS",
    "IgnoreChecker",
    "IgnorePattern",
    "is_binary_path",
    "parse_pattern",
]
