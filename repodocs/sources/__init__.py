"""Source adapters that list and read repository files."""

from .ignore import IgnoreChecker
from .local import FileContent, LocalSource, SourceFile, artifact_type, detect_language, repository_for_path

__all__ = [
    "FileContent",
    "IgnoreChecker",
    "LocalSource",
    "SourceFile",
    "artifact_type",
    "detect_language",
    "repository_for_path",
]
