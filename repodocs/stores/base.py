"""Persistence contract consumed by the generation pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..models import (
    Artifact,
    Component,
    Document,
    DocumentLink,
    GenerationMetrics,
    GenerationSession,
    Repository,
)


class Store(ABC):
    """Async persistence for repositories, artifacts, components, sessions and documents.

    Implementations raise :class:`repodocs.errors.PersistenceError` when a write
    cannot be completed.
    """

    # Repositories -------------------------------------------------------

    @abstractmethod
    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        """Return the repository or ``None`` when it is not registered."""

    @abstractmethod
    async def save_repository(self, repository: Repository) -> None:
        """Insert or replace a repository record."""

    @abstractmethod
    async def update_repository_status(
        self, repository_id: str, status: str, *, analyzed_at: str | None = None
    ) -> None:
        """Record the outcome of the latest run for a repository."""

    # Artifacts and components --------------------------------------------

    @abstractmethod
    async def upsert_artifacts(self, repository_id: str, artifacts: Sequence[Artifact]) -> None:
        """Upsert artifacts keyed by ``(repository_id, artifact.id)``."""

    @abstractmethod
    async def list_artifacts(self, repository_id: str) -> List[Artifact]:
        ...

    @abstractmethod
    async def replace_components(self, repository_id: str, components: Sequence[Component]) -> None:
        """Delete every stored component of the repository, then insert ``components``."""

    @abstractmethod
    async def list_components(self, repository_id: str) -> List[Component]:
        ...

    # Sessions -------------------------------------------------------------

    @abstractmethod
    async def create_session(self, session: GenerationSession) -> None:
        ...

    @abstractmethod
    async def update_session(self, session: GenerationSession) -> None:
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[GenerationSession]:
        ...

    @abstractmethod
    async def list_sessions(self, repository_id: str) -> List[GenerationSession]:
        """Return the repository's sessions, newest first."""

    # Documents ------------------------------------------------------------

    @abstractmethod
    async def get_document(self, repository_id: str, document_path: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def list_documents(self, repository_id: str, limit: int | None = None) -> List[Document]:
        """Return documents ordered by most recent update first."""

    @abstractmethod
    async def upsert_document(self, document: Document) -> Document:
        """Upsert keyed by ``(repository_id, document_path)`` and return the stored row."""

    @abstractmethod
    async def delete_documents(self, document_ids: Sequence[str]) -> int:
        ...

    # Links and metrics ------------------------------------------------------

    @abstractmethod
    async def replace_links(
        self, source_document_id: str, links: Sequence[DocumentLink]
    ) -> List[DocumentLink]:
        """Delete the outgoing links of a document, then insert ``links``."""

    @abstractmethod
    async def delete_links(self, document_ids: Sequence[str]) -> int:
        """Delete links whose source or target is one of ``document_ids``."""

    @abstractmethod
    async def list_links(self, source_document_id: str | None = None) -> List[DocumentLink]:
        ...

    @abstractmethod
    async def save_metrics(self, metrics: GenerationMetrics) -> None:
        ...

    @abstractmethod
    async def delete_metrics(self, document_ids: Sequence[str]) -> int:
        ...

    @abstractmethod
    async def list_metrics(self, document_id: str | None = None) -> List[GenerationMetrics]:
        ...

    async def flush(self) -> None:
        """Persist buffered writes; a no-op for stores that write through."""
        return None


__all__ = ["Store"]
