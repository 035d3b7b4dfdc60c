"""Exception types raised across the repodocs pipeline."""

from __future__ import annotations


class RepoDocsError(RuntimeError):
    """Base class for pipeline errors."""


class NotFoundError(RepoDocsError):
    """Raised when a repository, branch or file does not exist."""


class AccessDeniedError(RepoDocsError):
    """Raised when the source adapter is refused access to a repository."""


class GenerationError(RepoDocsError):
    """Raised when a document could not be generated for a work-plan item."""


class CompletionError(GenerationError):
    """Raised by completion adapters when the model call fails."""


class PersistenceError(RepoDocsError):
    """Raised when a store write fails."""


__all__ = [
    "AccessDeniedError",
    "CompletionError",
    "GenerationError",
    "NotFoundError",
    "PersistenceError",
    "RepoDocsError",
]
