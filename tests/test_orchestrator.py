"""Tests for repodocs.orchestrator."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from repodocs.errors import PersistenceError
from repodocs.logging import ProgressLog
from repodocs.models import Document, DocumentLink, GenerationMetrics
from repodocs.orchestrator import Orchestrator
from repodocs.sources import LocalSource, repository_for_path
from repodocs.stores import LocalStore
from tests._fixtures.doubles import RecordingCompletion
from tests._fixtures.repo_builder import RepoBuilder

AUTH_TS = """
import { SessionStore } from './session';

export class AuthService extends BaseService {
  login() {
    return new SessionStore();
  }
}
"""

SESSION_TS = """
export class SessionStore {}
"""


def _orchestrator(store: LocalStore, completion: RecordingCompletion) -> Orchestrator:
    return Orchestrator(store, LocalSource(), completion)


def _run(orchestrator: Orchestrator, root: Path, **kwargs):
    return asyncio.run(orchestrator.run_for_path(root, **kwargs))


def _documents(store: LocalStore, repository_id: str):
    return asyncio.run(store.list_documents(repository_id))


def test_empty_repository_generates_only_the_overview(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    result = _run(_orchestrator(store, completion), repo_builder.path())
    repository = repository_for_path(repo_builder.path())

    assert result.success
    assert result.documents_planned == 1
    assert result.documents_generated == 1
    assert result.links_created == 0
    assert result.total_cost == pytest.approx(0.01)
    assert result.failed_items == []

    (document,) = _documents(store, repository.id)
    assert document.document_path == "overview"
    assert document.document_type == "overview"
    assert document.title == "Generated"
    assert document.metadata["session_id"] == result.session_id
    assert document.metadata["overwritten"] is False

    session = asyncio.run(store.get_session(result.session_id))
    assert session is not None
    assert session.status == "completed"
    assert session.completed_at is not None
    assert (session.progress.completed, session.progress.total) == (1, 1)

    stored_repo = asyncio.run(store.get_repository(repository.id))
    assert stored_repo is not None
    assert stored_repo.analysis_status == "completed"
    assert stored_repo.last_analyzed_at is not None


def test_full_run_persists_artifacts_components_documents_and_metrics(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS, "src/session.ts": SESSION_TS, "README.md": "# Demo\n"})
    repository = repository_for_path(repo_builder.path())

    result = _run(_orchestrator(store, completion), repo_builder.path())

    assert result.success
    assert result.documents_planned == 3
    assert result.documents_generated == 3
    assert result.metrics.artifacts_discovered == 3
    assert result.metrics.components_extracted == 3

    artifacts = asyncio.run(store.list_artifacts(repository.id))
    assert sorted(a.path for a in artifacts) == ["README.md", "src/auth.ts", "src/session.ts"]
    assert all(a.id == f"{repository.id}:{a.path}" for a in artifacts)
    components = asyncio.run(store.list_components(repository.id))
    assert {c.id for c in components} == {
        "src/auth.ts.class.authservice",
        "src/auth.ts.function.login",
        "src/session.ts.class.sessionstore",
    }
    assert {d.document_path for d in _documents(store, repository.id)} == {
        "overview",
        "authservice",
        "sessionstore",
    }
    metrics = asyncio.run(store.list_metrics())
    assert len(metrics) == 3
    assert all(m.session_id == result.session_id and m.document_id for m in metrics)
    assert len(completion.calls) == 3
    assert completion.calls[0]["prompt"].startswith("Write the project overview page")


def test_rerun_on_unchanged_source_keeps_the_same_documents(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS, "src/session.ts": SESSION_TS})
    repository = repository_for_path(repo_builder.path())
    orchestrator = _orchestrator(store, completion)

    first = _run(orchestrator, repo_builder.path())
    before = {(d.document_path, d.id) for d in _documents(store, repository.id)}
    second = _run(orchestrator, repo_builder.path())
    after = {(d.document_path, d.id) for d in _documents(store, repository.id)}

    assert first.success and second.success
    assert second.metrics.documents_pruned == 0
    assert after == before
    assert {path for path, _ in after} == {"overview", "authservice", "sessionstore"}


def test_links_are_created_once_targets_exist(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS, "src/session.ts": SESSION_TS})
    orchestrator = _orchestrator(store, completion)
    repository = repository_for_path(repo_builder.path())

    first = _run(orchestrator, repo_builder.path())
    second = _run(orchestrator, repo_builder.path())

    assert first.links_created == 0
    assert second.links_created == 4

    documents = {d.document_path: d for d in _documents(store, repository.id)}
    auth_links = asyncio.run(store.list_links(documents["authservice"].id))
    assert sorted(link.link_type for link in auth_links) == ["calls", "imports"]
    assert {link.target_document_id for link in auth_links} == {documents["sessionstore"].id}
    overview_links = asyncio.run(store.list_links(documents["overview"].id))
    assert {link.link_type for link in overview_links} == {"references"}
    assert documents["authservice"].metadata["overwritten"] is True


def test_outdated_documents_are_pruned_with_their_links_and_metrics(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"auth.ts": "export class AuthService extends BaseService { login() {} }\n"})
    repository = repository_for_path(repo_builder.path())

    async def seed():
        await store.save_repository(repository)
        seeded = {}
        for path in ("overview", "authservice", "old_module"):
            seeded[path] = await store.upsert_document(
                Document(
                    repository_id=repository.id,
                    document_path=path,
                    title=path,
                    content="old",
                    summary="old",
                    document_type="overview" if path == "overview" else "module",
                )
            )
        old_id = seeded["old_module"].id
        await store.replace_links(old_id, [DocumentLink(old_id, seeded["overview"].id, "references")])
        await store.replace_links(
            seeded["authservice"].id, [DocumentLink(seeded["authservice"].id, old_id, "uses")]
        )
        await store.save_metrics(GenerationMetrics("m", 1, 1, 0.0, 1, document_id=old_id))
        return seeded

    seeded = asyncio.run(seed())
    old_id = seeded["old_module"].id

    result = _run(_orchestrator(store, completion), repo_builder.path())

    assert result.success
    assert result.metrics.documents_pruned == 1
    documents = {d.document_path: d for d in _documents(store, repository.id)}
    assert set(documents) == {"overview", "authservice"}
    assert documents["authservice"].id == seeded["authservice"].id
    assert documents["authservice"].metadata["overwritten"] is True
    links = asyncio.run(store.list_links())
    assert all(old_id not in (l.source_document_id, l.target_document_id) for l in links)
    assert asyncio.run(store.list_metrics(old_id)) == []
    assert result.links_created == 1


def test_pruning_can_be_disabled(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"auth.ts": "export class AuthService { login() {} }\n"})
    repository = repository_for_path(repo_builder.path())

    async def seed():
        await store.save_repository(repository)
        await store.upsert_document(
            Document(
                repository_id=repository.id,
                document_path="old_module",
                title="Old",
                content="old",
                summary="old",
                document_type="module",
            )
        )

    asyncio.run(seed())
    result = _run(_orchestrator(store, completion), repo_builder.path(), prune_outdated=False)

    assert result.metrics.documents_pruned == 0
    assert "old_module" in {d.document_path for d in _documents(store, repository.id)}


def test_failed_item_does_not_abort_the_run(
    repo_builder: RepoBuilder, store: LocalStore
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS, "src/session.ts": SESSION_TS})
    completion = RecordingCompletion(fail_when=lambda prompt: "(`authservice`)" in prompt)
    repository = repository_for_path(repo_builder.path())

    result = _run(_orchestrator(store, completion), repo_builder.path())

    assert result.success
    assert result.documents_planned == 3
    assert result.documents_generated == 2
    assert result.failed_items == ["authservice"]
    assert result.total_cost == pytest.approx(0.02)
    assert {d.document_path for d in _documents(store, repository.id)} == {"overview", "sessionstore"}
    session = asyncio.run(store.get_session(result.session_id))
    assert session is not None
    assert session.status == "completed"
    assert session.progress.completed == 3


class FailingUpsertStore(LocalStore):
    async def upsert_document(self, document):
        if document.document_path == "sessionstore":
            raise PersistenceError("disk full")
        return await super().upsert_document(document)


class FailingMetricsStore(LocalStore):
    async def save_metrics(self, metrics):
        raise PersistenceError("metrics table locked")


def test_document_persistence_failure_fails_only_that_item(
    repo_builder: RepoBuilder, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS, "src/session.ts": SESSION_TS})
    store = FailingUpsertStore()

    result = _run(_orchestrator(store, completion), repo_builder.path())

    assert result.success
    assert result.failed_items == ["sessionstore"]
    assert result.documents_generated == 2


def test_metrics_failures_are_best_effort(
    repo_builder: RepoBuilder, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/session.ts": SESSION_TS})
    store = FailingMetricsStore()
    log = ProgressLog()

    result = _run(_orchestrator(store, completion), repo_builder.path(), log=log)

    assert result.success
    assert result.documents_generated == 2
    assert any("metrics table locked" in event.message for event in log.events if event.level == "error")


def test_unknown_repository_fails_the_session(store: LocalStore, completion: RecordingCompletion) -> None:
    result = asyncio.run(_orchestrator(store, completion).run("missing-repo"))

    assert not result.success
    assert result.error == "Repository not found: missing-repo"
    assert result.documents_generated == 0
    session = asyncio.run(store.get_session(result.session_id))
    assert session is not None
    assert session.status == "failed"
    assert session.error == "Repository not found: missing-repo"
    assert completion.calls == []


def test_source_failure_marks_repository_failed(
    tmp_path: Path, store: LocalStore, completion: RecordingCompletion
) -> None:
    missing = tmp_path / "gone"
    log = ProgressLog()

    result = _run(_orchestrator(store, completion), missing, log=log)

    assert not result.success
    assert "not found" in (result.error or "")
    repository = asyncio.run(store.get_repository(repository_for_path(missing).id))
    assert repository is not None
    assert repository.analysis_status == "failed"
    assert log.events[-1].level == "error"


def test_progress_events_reach_listener(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/session.ts": SESSION_TS})
    events = []

    _run(_orchestrator(store, completion), repo_builder.path(), log=ProgressLog(events.append))

    messages = [event.message for event in events]
    assert messages[0].startswith("Starting full generation session")
    assert "Discovered 1 files" in messages
    assert any(message.startswith("Generating sessionstore") for message in messages)
    assert messages[-1] == "Generated 2 of 2 documents with 0 links"


def test_history_and_session_status(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    orchestrator = _orchestrator(store, completion)
    repository = repository_for_path(repo_builder.path())

    first = _run(orchestrator, repo_builder.path())
    second = _run(orchestrator, repo_builder.path(), session_type="incremental")

    history = asyncio.run(orchestrator.get_generation_history(repository.id))
    assert {session.id for session in history} == {first.session_id, second.session_id}
    status = asyncio.run(orchestrator.get_session_status(second.session_id))
    assert status is not None
    assert status.session_type == "incremental"
    assert status.work_plan is not None
    assert status.work_plan.doc_paths() == ["overview"]
    assert asyncio.run(orchestrator.get_session_status("unknown")) is None


def test_preview_plan_persists_nothing(
    repo_builder: RepoBuilder, store: LocalStore, completion: RecordingCompletion
) -> None:
    repo_builder.write({"src/auth.ts": AUTH_TS})
    repository = repository_for_path(repo_builder.path())

    plan = asyncio.run(_orchestrator(store, completion).preview_plan(repository))

    assert plan.doc_paths() == ["overview", "authservice"]
    assert asyncio.run(store.get_repository(repository.id)) is None
    assert asyncio.run(store.list_sessions(repository.id)) == []
    assert completion.calls == []


def test_orchestrator_requires_a_completion_source(store: LocalStore) -> None:
    with pytest.raises(ValueError):
        Orchestrator(store, LocalSource())


def test_for_repository_reads_config_and_persists_state(
    repo_builder: RepoBuilder, completion: RecordingCompletion
) -> None:
    repo_builder.write(
        {
            ".repodocs.yml": """
            planning:
              strategy: file-based
            generation:
              model_hint: tiny-model
            exclude_paths:
              - vendor/
            """,
            "src/auth.ts": AUTH_TS,
            "vendor/lib.ts": "export function vendored() {}\n",
        }
    )
    root = repo_builder.path()

    orchestrator = Orchestrator.for_repository(root, completion=completion)
    result = asyncio.run(orchestrator.run_for_path(root))

    assert result.success
    assert orchestrator.config.planning.strategy == "file-based"
    assert result.documents_planned == 2
    assert (root / ".repodocs" / "store.json").exists()
    assert all(call["model_hint"] == "tiny-model" for call in completion.calls)

    reloaded = LocalStore(root / ".repodocs" / "store.json")
    documents = asyncio.run(reloaded.list_documents(repository_for_path(root).id))
    assert {d.document_path for d in documents} == {"overview", "src.auth"}
