"""Tests for the in-memory/JSON local store."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from repodocs.errors import PersistenceError
from repodocs.models import (
    Artifact,
    Component,
    Document,
    DocumentLink,
    GenerationMetrics,
    GenerationSession,
    Repository,
)
from repodocs.stores import LocalStore


def _document(path: str, title: str = "Title") -> Document:
    return Document(
        repository_id="repo-1",
        document_path=path,
        title=title,
        content="body",
        summary="summary",
        document_type="module",
    )


def _metrics(document_id: str) -> GenerationMetrics:
    return GenerationMetrics(
        model_used="m",
        tokens_input=10,
        tokens_output=5,
        cost_estimated=0.1,
        generation_time_ms=3,
        document_id=document_id,
        session_id="s-1",
    )


def test_upsert_document_keeps_identity_per_path() -> None:
    store = LocalStore()

    async def scenario():
        first = await store.upsert_document(_document("auth", "First"))
        second = await store.upsert_document(_document("auth", "Second"))
        return first, second, await store.list_documents("repo-1")

    first, second, documents = asyncio.run(scenario())

    assert first.id and second.id == first.id
    assert second.created_at == first.created_at
    assert second.title == "Second"
    assert len(documents) == 1


def test_list_documents_returns_most_recent_first_with_limit() -> None:
    store = LocalStore()

    async def scenario():
        for path in ("a", "b", "c"):
            await store.upsert_document(_document(path))
        await store.upsert_document(_document("a"))
        return await store.list_documents("repo-1"), await store.list_documents("repo-1", limit=2)

    everything, limited = asyncio.run(scenario())

    assert [doc.document_path for doc in everything] == ["a", "c", "b"]
    assert [doc.document_path for doc in limited] == ["a", "c"]


def test_replace_components_drops_previous_set() -> None:
    store = LocalStore()
    old = Component(id="a.py.function.old", name="old", type="function", parent_path="a.py", start_line=1, end_line=1)
    new = Component(id="a.py.function.new", name="new", type="function", parent_path="a.py", start_line=1, end_line=1)

    async def scenario():
        await store.replace_components("repo-1", [old])
        await store.replace_components("repo-1", [new])
        after_new = await store.list_components("repo-1")
        await store.replace_components("repo-1", [])
        return after_new, await store.list_components("repo-1")

    after_new, after_empty = asyncio.run(scenario())

    assert [c.id for c in after_new] == ["a.py.function.new"]
    assert after_empty == []


def test_artifacts_are_upserted_without_content() -> None:
    store = LocalStore()
    artifact = Artifact(id="repo-1:a.py", path="a.py", language="python", size=3, hash="h1", content="x=1")

    async def scenario():
        await store.upsert_artifacts("repo-1", [artifact])
        await store.upsert_artifacts("repo-1", [Artifact(id="repo-1:a.py", path="a.py", language="python", size=4, hash="h2")])
        return await store.list_artifacts("repo-1")

    (stored,) = asyncio.run(scenario())

    assert stored.hash == "h2"
    assert stored.content is None


def test_links_are_replaced_per_source_and_deleted_by_either_end() -> None:
    store = LocalStore()

    async def scenario():
        await store.replace_links("d1", [DocumentLink("ignored", "d2", "imports")])
        await store.replace_links("d1", [DocumentLink("d1", "d3", "uses")])
        await store.replace_links("d3", [DocumentLink("d3", "d4", "calls")])
        before = await store.list_links()
        removed = await store.delete_links(["d3"])
        return before, removed, await store.list_links()

    before, removed, after = asyncio.run(scenario())

    assert [(l.source_document_id, l.target_document_id) for l in before] == [("d1", "d3"), ("d3", "d4")]
    assert removed == 2
    assert after == []


def test_metrics_are_deleted_by_document() -> None:
    store = LocalStore()

    async def scenario():
        await store.save_metrics(_metrics("d1"))
        await store.save_metrics(_metrics("d2"))
        removed = await store.delete_metrics(["d1"])
        return removed, await store.list_metrics()

    removed, remaining = asyncio.run(scenario())

    assert removed == 1
    assert [m.document_id for m in remaining] == ["d2"]


def test_sessions_must_exist_before_update() -> None:
    store = LocalStore()
    session = GenerationSession(id="s-1", repository_id="repo-1", session_type="full")

    async def scenario():
        with pytest.raises(PersistenceError):
            await store.update_session(session)
        await store.create_session(session)
        with pytest.raises(PersistenceError):
            await store.create_session(session)
        session.status = "generating"
        await store.update_session(session)
        return await store.get_session("s-1")

    stored = asyncio.run(scenario())

    assert stored is not None
    assert stored.status == "generating"


def test_update_status_of_unknown_repository_fails() -> None:
    store = LocalStore()

    with pytest.raises(PersistenceError):
        asyncio.run(store.update_repository_status("missing", "analyzing"))


def test_store_round_trips_through_json(tmp_path: Path) -> None:
    path = tmp_path / "state" / "store.json"
    store = LocalStore(path)
    repository = Repository(id="repo-1", name="demo", ref=str(tmp_path))

    async def populate():
        await store.save_repository(repository)
        await store.update_repository_status("repo-1", "completed", analyzed_at="2024-01-01T00:00:00Z")
        saved = await store.upsert_document(_document("auth"))
        await store.save_metrics(_metrics(saved.id))
        await store.create_session(GenerationSession(id="s-1", repository_id="repo-1", session_type="full"))
        await store.flush()
        return saved

    saved = asyncio.run(populate())
    reloaded = LocalStore(path)

    async def read():
        return (
            await reloaded.get_repository("repo-1"),
            await reloaded.get_document("repo-1", "auth"),
            await reloaded.list_metrics(saved.id),
            await reloaded.list_sessions("repo-1"),
        )

    repo, document, metrics, sessions = asyncio.run(read())

    assert repo is not None and repo.analysis_status == "completed"
    assert repo.last_analyzed_at == "2024-01-01T00:00:00Z"
    assert document is not None and document.id == saved.id
    assert len(metrics) == 1
    assert [s.id for s in sessions] == ["s-1"]


def test_unreadable_store_file_starts_empty(tmp_path: Path) -> None:
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    store = LocalStore(path)

    assert asyncio.run(store.get_repository("repo-1")) is None
