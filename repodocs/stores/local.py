"""In-memory store with optional JSON file persistence."""

from __future__ import annotations

import copy
import json
import uuid
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..errors import PersistenceError
from ..logging import get_logger
from ..models import (
    Artifact,
    Component,
    Document,
    DocumentLink,
    GenerationMetrics,
    GenerationSession,
    Repository,
    utc_timestamp,
)
from .base import Store

_STORE_VERSION = 1


class LocalStore(Store):
    """Keeps every collection in memory and mirrors it to ``path`` on :meth:`flush`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self.logger = get_logger("stores.local")
        self._reset()
        if self._path is not None:
            self._load(self._path)

    def _reset(self) -> None:
        self._repositories: Dict[str, Repository] = {}
        self._artifacts: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._components: Dict[str, List[Component]] = {}
        self._sessions: Dict[str, GenerationSession] = {}
        self._documents: Dict[Tuple[str, str], Document] = {}
        self._document_order: Dict[str, int] = {}
        self._links: List[DocumentLink] = []
        self._metrics: List[GenerationMetrics] = []
        self._sequence = 0
        self._dirty = False

    # Repositories -------------------------------------------------------

    async def get_repository(self, repository_id: str) -> Optional[Repository]:
        repository = self._repositories.get(repository_id)
        return replace(repository) if repository else None

    async def save_repository(self, repository: Repository) -> None:
        self._repositories[repository.id] = replace(repository)
        self._dirty = True

    async def update_repository_status(
        self, repository_id: str, status: str, *, analyzed_at: str | None = None
    ) -> None:
        repository = self._repositories.get(repository_id)
        if repository is None:
            raise PersistenceError(f"Unknown repository: {repository_id}")
        repository.analysis_status = status
        if analyzed_at is not None:
            repository.last_analyzed_at = analyzed_at
        self._dirty = True

    # Artifacts and components --------------------------------------------

    async def upsert_artifacts(self, repository_id: str, artifacts: Sequence[Artifact]) -> None:
        bucket = self._artifacts.setdefault(repository_id, {})
        for artifact in artifacts:
            record = artifact.as_record()
            record["updated_at"] = utc_timestamp()
            bucket[artifact.id] = record
        self._dirty = True

    async def list_artifacts(self, repository_id: str) -> List[Artifact]:
        records = self._artifacts.get(repository_id, {}).values()
        return [
            Artifact(
                id=record["id"],
                path=record["path"],
                language=record["language"],
                size=record["size"],
                hash=record["hash"],
                type=record.get("type", "source"),
            )
            for record in records
        ]

    async def replace_components(self, repository_id: str, components: Sequence[Component]) -> None:
        self._components[repository_id] = [copy.deepcopy(component) for component in components]
        self._dirty = True

    async def list_components(self, repository_id: str) -> List[Component]:
        return copy.deepcopy(self._components.get(repository_id, []))

    # Sessions -------------------------------------------------------------

    async def create_session(self, session: GenerationSession) -> None:
        if session.id in self._sessions:
            raise PersistenceError(f"Session already exists: {session.id}")
        self._sessions[session.id] = copy.deepcopy(session)
        self._dirty = True

    async def update_session(self, session: GenerationSession) -> None:
        if session.id not in self._sessions:
            raise PersistenceError(f"Unknown session: {session.id}")
        updated = copy.deepcopy(session)
        updated.updated_at = utc_timestamp()
        self._sessions[session.id] = updated
        self._dirty = True

    async def get_session(self, session_id: str) -> Optional[GenerationSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def list_sessions(self, repository_id: str) -> List[GenerationSession]:
        sessions = [s for s in self._sessions.values() if s.repository_id == repository_id]
        sessions.sort(key=lambda session: session.started_at, reverse=True)
        return copy.deepcopy(sessions)

    # Documents ------------------------------------------------------------

    async def get_document(self, repository_id: str, document_path: str) -> Optional[Document]:
        document = self._documents.get((repository_id, document_path))
        return copy.deepcopy(document) if document else None

    async def list_documents(self, repository_id: str, limit: int | None = None) -> List[Document]:
        documents = [doc for key, doc in self._documents.items() if key[0] == repository_id]
        documents.sort(key=lambda doc: self._document_order.get(doc.id or "", 0), reverse=True)
        if limit is not None:
            documents = documents[: max(0, limit)]
        return copy.deepcopy(documents)

    async def upsert_document(self, document: Document) -> Document:
        key = (document.repository_id, document.document_path)
        now = utc_timestamp()
        existing = self._documents.get(key)
        stored = copy.deepcopy(document)
        stored.id = existing.id if existing else (document.id or uuid.uuid4().hex)
        stored.created_at = existing.created_at if existing else now
        stored.updated_at = now
        self._documents[key] = stored
        self._sequence += 1
        self._document_order[stored.id] = self._sequence
        self._dirty = True
        return copy.deepcopy(stored)

    async def delete_documents(self, document_ids: Sequence[str]) -> int:
        targets = set(document_ids)
        doomed = [key for key, doc in self._documents.items() if doc.id in targets]
        for key in doomed:
            removed = self._documents.pop(key)
            self._document_order.pop(removed.id or "", None)
        if doomed:
            self._dirty = True
        return len(doomed)

    # Links and metrics ------------------------------------------------------

    async def replace_links(
        self, source_document_id: str, links: Sequence[DocumentLink]
    ) -> List[DocumentLink]:
        self._links = [link for link in self._links if link.source_document_id != source_document_id]
        inserted = [replace(link, source_document_id=source_document_id) for link in links]
        self._links.extend(inserted)
        self._dirty = True
        return [replace(link) for link in inserted]

    async def delete_links(self, document_ids: Sequence[str]) -> int:
        targets = set(document_ids)
        kept = [
            link
            for link in self._links
            if link.source_document_id not in targets and link.target_document_id not in targets
        ]
        removed = len(self._links) - len(kept)
        if removed:
            self._links = kept
            self._dirty = True
        return removed

    async def list_links(self, source_document_id: str | None = None) -> List[DocumentLink]:
        return [
            replace(link)
            for link in self._links
            if source_document_id is None or link.source_document_id == source_document_id
        ]

    async def save_metrics(self, metrics: GenerationMetrics) -> None:
        self._metrics.append(replace(metrics))
        self._dirty = True

    async def delete_metrics(self, document_ids: Sequence[str]) -> int:
        targets = set(document_ids)
        kept = [metric for metric in self._metrics if metric.document_id not in targets]
        removed = len(self._metrics) - len(kept)
        if removed:
            self._metrics = kept
            self._dirty = True
        return removed

    async def list_metrics(self, document_id: str | None = None) -> List[GenerationMetrics]:
        return [
            replace(metric)
            for metric in self._metrics
            if document_id is None or metric.document_id == document_id
        ]

    # Persistence ------------------------------------------------------------

    async def flush(self) -> None:
        self.persist()

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        documents = sorted(
            self._documents.values(), key=lambda doc: self._document_order.get(doc.id or "", 0)
        )
        payload = {
            "version": _STORE_VERSION,
            "repositories": {key: asdict(repo) for key, repo in self._repositories.items()},
            "artifacts": self._artifacts,
            "components": {
                key: [asdict(component) for component in components]
                for key, components in self._components.items()
            },
            "sessions": {key: session.as_dict() for key, session in self._sessions.items()},
            "documents": [asdict(document) for document in documents],
            "links": [asdict(link) for link in self._links],
            "metrics": [asdict(metric) for metric in self._metrics],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Failed to write store {self._path}: {exc}") from exc
        self._dirty = False

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Ignoring unreadable store %s: %s", path, exc)
            return
        if not isinstance(data, dict) or data.get("version") != _STORE_VERSION:
            return
        try:
            for key, raw in (data.get("repositories") or {}).items():
                self._repositories[key] = Repository.from_dict(raw)
            for key, raw in (data.get("artifacts") or {}).items():
                if isinstance(raw, dict):
                    self._artifacts[key] = raw
            for key, raw in (data.get("components") or {}).items():
                self._components[key] = [Component.from_dict(item) for item in raw]
            for key, raw in (data.get("sessions") or {}).items():
                self._sessions[key] = GenerationSession.from_dict(raw)
            for raw in data.get("documents") or []:
                document = Document.from_dict(raw)
                self._documents[(document.repository_id, document.document_path)] = document
                self._sequence += 1
                self._document_order[document.id or ""] = self._sequence
            self._links = [DocumentLink(**raw) for raw in data.get("links") or []]
            self._metrics = [GenerationMetrics(**raw) for raw in data.get("metrics") or []]
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.warning("Store %s is malformed; starting empty: %s", path, exc)
            self._reset()
            return
        self._dirty = False


__all__ = ["LocalStore"]
