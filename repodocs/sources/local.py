"""Source adapter that reads a repository from a local working tree."""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import List, Optional, Sequence

from ..errors import AccessDeniedError, NotFoundError
from ..logging import get_logger
from ..models import Repository
from .ignore import IgnoreChecker

_LANGUAGE_BY_EXTENSION = {
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "pyx": "python",
    "pyi": "python",
    "html": "html",
    "htm": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "less": "less",
    "vue": "vue",
    "svelte": "svelte",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "php": "php",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "swift": "swift",
    "kt": "kotlin",
    "scala": "scala",
    "clj": "clojure",
    "elm": "elm",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "xml": "xml",
    "toml": "toml",
    "ini": "ini",
    "env": "env",
    "md": "markdown",
    "mdx": "markdown",
    "rst": "rst",
    "txt": "text",
    "sh": "shell",
    "bash": "shell",
    "zsh": "shell",
    "fish": "shell",
    "ps1": "powershell",
    "bat": "batch",
    "cmd": "batch",
    "sql": "sql",
    "dockerfile": "dockerfile",
    "r": "r",
    "matlab": "matlab",
    "m": "matlab",
}

_READ_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class SourceFile:
    """A file listed by a source adapter."""

    path: str
    size: int
    content_hash: str


@dataclass(frozen=True)
class FileContent:
    content: str
    hash: str
    size: int


def detect_language(path: str) -> str:
    """Map a file path to a lowercase language tag, ``text`` when unknown."""
    name = path.rsplit("/", 1)[-1].lower()
    if name == "dockerfile":
        return "dockerfile"
    if "." not in name:
        return "text"
    return _LANGUAGE_BY_EXTENSION.get(name.rsplit(".", 1)[-1], "text")


def artifact_type(path: str) -> str:
    lowered = path.lower()
    if "test" in lowered or "spec" in lowered:
        return "test"
    if "config" in lowered or "setup" in lowered:
        return "config"
    if "readme" in lowered or "doc" in lowered:
        return "doc"
    return "source"


def repository_for_path(path: Path | str, *, branch: str = "main") -> Repository:
    """Describe a working tree as a :class:`Repository` with a stable id."""
    root = Path(path).expanduser().resolve()
    digest = hashlib.sha256(root.as_posix().encode("utf-8")).hexdigest()[:16]
    return Repository(id=f"local-{digest}", name=root.name or root.as_posix(), ref=str(root), default_branch=branch)


def _hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_READ_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


class LocalSource:
    """Lists and reads files under a local directory.

    ``repo_ref`` is the repository root on disk. The working tree has a single
    checkout, so the ``branch`` argument is accepted for interface parity and
    otherwise ignored.
    """

    def __init__(self, exclude_paths: Sequence[str] = ()) -> None:
        self.exclude_paths = list(exclude_paths)
        self.logger = get_logger("sources.local")

    async def list_files(self, repo_ref: str, branch: str | None = None) -> List[SourceFile]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._list_files, repo_ref))

    async def get_file_content(self, repo_ref: str, path: str) -> Optional[FileContent]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._read_file, repo_ref, path))

    def _resolve_root(self, repo_ref: str) -> Path:
        root = Path(repo_ref).expanduser().resolve()
        if not root.exists():
            raise NotFoundError(f"Repository path not found: {repo_ref}")
        if not root.is_dir():
            raise NotFoundError(f"Repository path is not a directory: {repo_ref}")
        if not os.access(root, os.R_OK | os.X_OK):
            raise AccessDeniedError(f"Repository path is not readable: {repo_ref}")
        return root

    def _list_files(self, repo_ref: str) -> List[SourceFile]:
        root = self._resolve_root(repo_ref)
        checker = IgnoreChecker.for_root(root, self.exclude_paths)

        files: List[SourceFile] = []
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            rel_dir = current.relative_to(root).as_posix() if current != root else ""

            kept = []
            for name in sorted(dirnames):
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                if not checker.skip_directory(rel_path):
                    kept.append(name)
            dirnames[:] = kept

            for filename in sorted(filenames):
                rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
                if checker.is_ignored(rel_path):
                    continue
                file_path = current / filename
                try:
                    size = file_path.stat().st_size
                    content_hash = _hash_file(file_path)
                except OSError as exc:
                    self.logger.warning("Skipping unreadable file %s: %s", rel_path, exc)
                    continue
                files.append(SourceFile(path=rel_path, size=size, content_hash=content_hash))

        self.logger.debug("Listed %d files under %s", len(files), root)
        return files

    def _read_file(self, repo_ref: str, path: str) -> Optional[FileContent]:
        root = self._resolve_root(repo_ref)
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            self.logger.warning("Refusing to read %s outside %s", path, root)
            return None
        try:
            data = target.read_bytes()
        except FileNotFoundError:
            return None
        except PermissionError as exc:
            raise AccessDeniedError(f"Cannot read {path}: {exc}") from exc
        except OSError as exc:
            self.logger.warning("Failed to read %s: %s", path, exc)
            return None
        return FileContent(
            content=data.decode("utf-8", errors="replace"),
            hash=_hash_bytes(data),
            size=len(data),
        )


__all__ = [
    "FileContent",
    "LocalSource",
    "SourceFile",
    "artifact_type",
    "detect_language",
    "repository_for_path",
]
