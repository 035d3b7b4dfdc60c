"""Assembles context windows of previously generated document summaries."""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from .config import ContextConfig
from .logging import get_logger
from .models import ContextDocument, ContextWindow, Document
from .planner import OVERVIEW_DOC_PATH
from .stores.base import Store
from .stores.context_cache import ContextCache

RECENT_SCORE = 0.8
OVERVIEW_SCORE = 1.0
RECENT_SHARE = 0.6
LENGTH_PENALTY = 0.1


class ContextLoader:
    """Builds bounded, cached context windows for document generation.

    ``max_tokens`` is reported through the window's token estimate but is never
    used to truncate the selection.
    """

    def __init__(
        self,
        store: Store,
        cache: ContextCache | None = None,
        *,
        config: ContextConfig | None = None,
    ) -> None:
        self.store = store
        self.cache = cache if cache is not None else ContextCache()
        self.config = config or ContextConfig()
        self.logger = get_logger("context")

    async def load_context_window(
        self,
        repository_id: str,
        target_doc_path: str | None = None,
        config: ContextConfig | None = None,
    ) -> ContextWindow:
        settings = config or self.config
        cache_key = generate_cache_key(repository_id, target_doc_path, settings)

        cached = self._read_cache(repository_id, cache_key)
        if cached is not None:
            self.logger.debug("Context cache hit for %s", target_doc_path or "none")
            return cached

        # One extra row so the overview, wherever it sits in recency order,
        # never takes a candidate slot.
        candidate_limit = max(0, settings.max_documents) * 2
        listed = await self.store.list_documents(repository_id, limit=candidate_limit + 1)
        documents = [doc for doc in listed if doc.document_type != "overview"][:candidate_limit]
        overview = None
        if settings.include_overview:
            overview = await self.store.get_document(repository_id, OVERVIEW_DOC_PATH)

        selected = select_context_documents(documents, target_doc_path, settings, overview=overview)
        window = _window(selected, repository_id, cache_key, settings)

        self._write_cache(repository_id, cache_key, window, settings.cache_expiry_hours)
        return window

    def clear_expired_cache(self) -> int:
        try:
            removed = self.cache.clear_expired()
            self.cache.persist()
        except Exception as exc:  # cache maintenance is best-effort
            self.logger.warning("Failed to clear expired context cache: %s", exc)
            return 0
        return removed

    def clear_cache_for_repository(self, repository_id: str) -> int:
        try:
            removed = self.cache.clear_repository(repository_id)
            self.cache.persist()
        except Exception as exc:  # cache maintenance is best-effort
            self.logger.warning("Failed to clear context cache for %s: %s", repository_id, exc)
            return 0
        return removed

    def _read_cache(self, repository_id: str, cache_key: str) -> Optional[ContextWindow]:
        try:
            return self.cache.get(repository_id, cache_key)
        except Exception as exc:  # a broken cache only forces recomputation
            self.logger.warning("Failed to load context from cache: %s", exc)
            return None

    def _write_cache(
        self, repository_id: str, cache_key: str, window: ContextWindow, expiry_hours: float
    ) -> None:
        expires_at = datetime.now(UTC) + timedelta(hours=expiry_hours)
        try:
            self.cache.store(repository_id, cache_key, window, expires_at=expires_at)
            self.cache.persist()
        except Exception as exc:  # a broken cache only forces recomputation
            self.logger.warning("Failed to save context to cache: %s", exc)


def generate_cache_key(
    repository_id: str, target_doc_path: str | None, config: ContextConfig
) -> str:
    key_data = {
        "repositoryId": repository_id,
        "targetDocPath": target_doc_path or "none",
        "strategy": config.strategy,
        "maxTokens": config.max_tokens,
        "maxDocuments": config.max_documents,
    }
    return hashlib.sha256(json.dumps(key_data).encode("utf-8")).hexdigest()


def select_context_documents(
    documents: Sequence[Document],
    target_doc_path: str | None,
    config: ContextConfig,
    *,
    overview: Document | None = None,
) -> List[ContextDocument]:
    """Pick the window's documents; the overview rides outside the strategy budget.

    ``overview`` is looked up by the caller since it is usually the oldest page of
    a run; without one, the first overview among ``documents`` is used.
    """
    selected: List[ContextDocument] = []
    if config.include_overview:
        if overview is None:
            overview = next((doc for doc in documents if doc.document_type == "overview"), None)
        if overview is not None:
            selected.append(
                _context_document(overview, OVERVIEW_SCORE, fallback="Project overview document")
            )

    budget = max(0, config.max_documents)
    if config.strategy == "recent":
        selected.extend(select_recent(documents, budget))
    elif config.strategy == "relevant":
        selected.extend(select_relevant(documents, target_doc_path, budget))
    else:
        selected.extend(select_mixed(documents, target_doc_path, budget))
    return selected


def select_recent(documents: Sequence[Document], count: int) -> List[ContextDocument]:
    if count <= 0:
        return []
    candidates = [doc for doc in documents if doc.document_type != "overview"]
    return [_context_document(doc, RECENT_SCORE) for doc in candidates[:count]]


def select_relevant(
    documents: Sequence[Document], target_doc_path: str | None, count: int
) -> List[ContextDocument]:
    if not target_doc_path:
        return select_recent(documents, count)
    if count <= 0:
        return []
    scored = [
        (relevance_score(doc.document_path, target_doc_path), doc)
        for doc in documents
        if doc.document_type != "overview"
    ]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [_context_document(doc, score) for score, doc in scored[:count]]


def select_mixed(
    documents: Sequence[Document], target_doc_path: str | None, count: int
) -> List[ContextDocument]:
    recent_count = math.ceil(count * RECENT_SHARE)
    relevant_count = count - recent_count
    merged: Dict[str, ContextDocument] = {}
    for doc in [
        *select_recent(documents, recent_count),
        *select_relevant(documents, target_doc_path, relevant_count),
    ]:
        merged[doc.id] = doc
    return list(merged.values())[:count]


def relevance_score(doc_path: str, target_path: str) -> float:
    """Score two dotted doc paths by shared leading segments, in ``[0, 1]``."""
    doc_parts = doc_path.split(".")
    target_parts = target_path.split(".")
    common = 0
    for doc_part, target_part in zip(doc_parts, target_parts):
        if doc_part != target_part:
            break
        common += 1
    prefix_score = common / max(len(doc_parts), len(target_parts))
    penalty = abs(len(doc_parts) - len(target_parts)) * LENGTH_PENALTY
    return max(0.0, prefix_score - penalty)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _context_document(document: Document, score: float, *, fallback: str | None = None) -> ContextDocument:
    summary = document.summary or fallback or f"Documentation for {document.title}"
    return ContextDocument(
        id=document.id or document.document_path,
        title=document.title,
        document_path=document.document_path,
        summary=summary,
        document_type=document.document_type,
        relevance_score=score,
    )


def _window(
    documents: List[ContextDocument],
    repository_id: str,
    cache_key: str,
    config: ContextConfig,
) -> ContextWindow:
    total = sum(estimate_tokens(f"{doc.title} {doc.summary}") for doc in documents)
    return ContextWindow(
        documents=[replace(doc) for doc in documents],
        total_tokens=total,
        metadata={
            "repositoryId": repository_id,
            "cacheKey": cache_key,
            "loadedAt": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "strategy": config.strategy,
            "maxTokens": config.max_tokens,
            "overBudget": total > config.max_tokens,
        },
    )


__all__ = [
    "ContextLoader",
    "estimate_tokens",
    "generate_cache_key",
    "relevance_score",
    "select_context_documents",
    "select_mixed",
    "select_recent",
    "select_relevant",
]
