"""Pipeline orchestration: discovery, extraction, planning and generation."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .config import RepoDocsConfig, load_config
from .context_loader import ContextLoader
from .errors import AccessDeniedError, NotFoundError
from .extractors import ExtractorRegistry, build_registry
from .generator import DocGenerator, build_link_index
from .llm import CompletionAdapter, build_completion_adapter
from .logging import ProgressLog, get_logger
from .models import (
    Artifact,
    Component,
    DocumentLink,
    GenerationResult,
    GenerationSession,
    PipelineMetrics,
    PipelineResult,
    Repository,
    SessionProgress,
    WorkPlan,
    WorkPlanItem,
    utc_timestamp,
)
from .planner import Planner
from .prompting import GenerationRequest, PromptBuilder
from .sources.local import LocalSource, artifact_type, detect_language, repository_for_path
from .stores import ContextCache, LocalStore, Store

STATE_DIRNAME = ".repodocs"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class Orchestrator:
    """Runs the documentation pipeline for registered repositories.

    Phases run strictly in order and items are processed one at a time. A failing
    work-plan item is recorded and skipped; a failing phase fails the whole run.
    """

    def __init__(
        self,
        store: Store,
        source: LocalSource,
        completion: CompletionAdapter | None = None,
        *,
        registry: ExtractorRegistry | None = None,
        planner: Planner | None = None,
        context_loader: ContextLoader | None = None,
        prompt_builder: PromptBuilder | None = None,
        generator: DocGenerator | None = None,
        config: RepoDocsConfig | None = None,
    ) -> None:
        self.config = config or RepoDocsConfig(root=Path.cwd())
        self.store = store
        self.source = source
        self.registry = registry or build_registry(self.config.extraction.languages or None)
        self.planner = planner or Planner()
        self.context_loader = context_loader or ContextLoader(store, config=self.config.context)
        self.prompt_builder = prompt_builder or PromptBuilder()
        if generator is None:
            if completion is None:
                raise ValueError("Orchestrator needs a completion adapter or a DocGenerator")
            generator = DocGenerator(
                completion, self.prompt_builder, model_hint=self.config.generation.model_hint
            )
        self.generator = generator
        self.logger = get_logger("orchestrator")

    @classmethod
    def for_repository(
        cls,
        root: Path | str,
        *,
        store_path: Path | None = None,
        completion: CompletionAdapter | None = None,
    ) -> "Orchestrator":
        """Wire the default local adapters for the working tree at ``root``.

        Raises :class:`repodocs.config.ConfigError` when ``.repodocs.yml`` is invalid.
        """
        root_path = Path(root).expanduser().resolve()
        config = load_config(root_path)
        state_dir = root_path / STATE_DIRNAME
        store = LocalStore(store_path or config.store_path or state_dir / "store.json")
        cache = ContextCache(state_dir / "context_cache.json")
        return cls(
            store,
            LocalSource(config.exclude_paths),
            completion or build_completion_adapter(config.llm, root_path),
            context_loader=ContextLoader(store, cache, config=config.context),
            config=config,
        )

    async def run_for_path(
        self,
        path: Path | str,
        *,
        session_type: str = "full",
        prune_outdated: bool | None = None,
        log: ProgressLog | None = None,
    ) -> PipelineResult:
        """Register the working tree at ``path`` if needed, then run the pipeline for it."""
        repository = await self.register_repository(repository_for_path(path))
        return await self.run(
            repository.id, session_type=session_type, prune_outdated=prune_outdated, log=log
        )

    async def register_repository(self, repository: Repository) -> Repository:
        existing = await self.store.get_repository(repository.id)
        if existing is not None:
            return existing
        await self.store.save_repository(repository)
        return repository

    async def get_session_status(self, session_id: str) -> Optional[GenerationSession]:
        return await self.store.get_session(session_id)

    async def get_generation_history(self, repository_id: str) -> List[GenerationSession]:
        return await self.store.list_sessions(repository_id)

    async def preview_plan(self, repository: Repository, log: ProgressLog | None = None) -> WorkPlan:
        """Discover, extract and plan without persisting anything."""
        log = log or ProgressLog()
        artifacts = await self._discover(repository, log)
        components = await self._extract(repository, artifacts, log)
        return self.planner.create_work_plan(
            repository.id, components, "full", strategy=self.config.planning.strategy
        )

    async def run(
        self,
        repository_id: str,
        *,
        session_type: str = "full",
        prune_outdated: bool | None = None,
        log: ProgressLog | None = None,
    ) -> PipelineResult:
        log = log or ProgressLog()
        prune = self.config.generation.prune_outdated if prune_outdated is None else prune_outdated
        metrics = PipelineMetrics()
        session = GenerationSession(
            id=uuid.uuid4().hex, repository_id=repository_id, session_type=session_type
        )
        results: List[GenerationResult] = []
        links_created = 0
        planned = 0
        run_started = time.perf_counter()
        session_created = False
        repository: Repository | None = None

        try:
            await self.store.create_session(session)
            session_created = True
            log.info("Starting %s generation session %s", session_type, session.id)

            repository = await self.store.get_repository(repository_id)
            if repository is None:
                raise NotFoundError(f"Repository not found: {repository_id}")
            await self.store.update_repository_status(repository.id, "analyzing")

            started = time.perf_counter()
            artifacts = await self._discover(repository, log)
            await self.store.upsert_artifacts(repository.id, artifacts)
            metrics.discovery_ms = _elapsed_ms(started)
            metrics.artifacts_discovered = len(artifacts)

            started = time.perf_counter()
            components = await self._extract(repository, artifacts, log)
            await self.store.replace_components(repository.id, components)
            metrics.extraction_ms = _elapsed_ms(started)
            metrics.components_extracted = len(components)

            started = time.perf_counter()
            plan = self.planner.create_work_plan(
                repository.id, components, session_type, strategy=self.config.planning.strategy
            )
            session.status = "generating"
            session.work_plan = plan
            planned = len(plan.items)
            session.progress = SessionProgress(completed=0, total=len(plan.items))
            await self.store.update_session(session)
            metrics.planning_ms = _elapsed_ms(started)
            log.info(
                "Planned %d documents (%d estimated tokens)",
                len(plan.items),
                plan.total_estimated_tokens,
            )

            started = time.perf_counter()
            self.context_loader.clear_cache_for_repository(repository.id)
            if prune:
                metrics.documents_pruned = await self._prune(repository.id, plan, log)
            results, links_created = await self._generate(repository, plan, components, session, log)
            metrics.generation_ms = _elapsed_ms(started)

            session.status = "completed"
            session.completed_at = utc_timestamp()
            await self.store.update_session(session)
            await self.store.update_repository_status(
                repository.id, "completed", analyzed_at=utc_timestamp()
            )
            await self.store.flush()
        except Exception as exc:
            metrics.total_ms = _elapsed_ms(run_started)
            log.error("Generation session %s failed: %s", session.id, exc)
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.exception("Pipeline failure")
            await self._mark_failed(session, repository, str(exc), session_created)
            return self._result(
                False, session.id, results, planned, links_created, metrics, error=str(exc)
            )

        metrics.total_ms = _elapsed_ms(run_started)
        result = self._result(True, session.id, results, planned, links_created, metrics)
        log.info(
            "Generated %d of %d documents with %d links",
            result.documents_generated,
            result.documents_planned,
            result.links_created,
        )
        return result

    # ------------------------------------------------------------------
    # Phases

    async def _discover(self, repository: Repository, log: ProgressLog) -> List[Artifact]:
        files = await self.source.list_files(repository.ref, repository.default_branch)
        artifacts = [
            Artifact(
                id=f"{repository.id}:{entry.path}",
                path=entry.path,
                language=detect_language(entry.path),
                size=entry.size,
                hash=entry.content_hash,
                type=artifact_type(entry.path),
            )
            for entry in files
        ]
        log.info("Discovered %d files", len(artifacts))
        return artifacts

    async def _extract(
        self, repository: Repository, artifacts: Sequence[Artifact], log: ProgressLog
    ) -> List[Component]:
        components: List[Component] = []
        for artifact in artifacts:
            if not self.registry.supports(artifact.language):
                continue
            try:
                fetched = await self.source.get_file_content(repository.ref, artifact.path)
            except (NotFoundError, AccessDeniedError) as exc:
                log.error("Skipping %s: %s", artifact.path, exc)
                continue
            if fetched is None:
                log.error("Skipping %s: content unavailable", artifact.path)
                continue
            artifact.content = fetched.content
            found = self.registry.extract_components(artifact)
            artifact.content = None
            components.extend(found)
            self.logger.debug("Extracted %d components from %s", len(found), artifact.path)
        log.info("Extracted %d components from %d files", len(components), len(artifacts))
        return components

    async def _prune(self, repository_id: str, plan: WorkPlan, log: ProgressLog) -> int:
        planned = set(plan.doc_paths())
        try:
            existing = await self.store.list_documents(repository_id)
            stale_ids = [
                doc.id for doc in existing if doc.id and doc.document_path not in planned
            ]
            if not stale_ids:
                return 0
            await self.store.delete_links(stale_ids)
            await self.store.delete_metrics(stale_ids)
            removed = await self.store.delete_documents(stale_ids)
        except Exception as exc:
            log.error("Pruning outdated documents failed: %s", exc)
            return 0
        log.info("Pruned %d outdated documents", removed)
        return removed

    async def _generate(
        self,
        repository: Repository,
        plan: WorkPlan,
        components: Sequence[Component],
        session: GenerationSession,
        log: ProgressLog,
    ) -> Tuple[List[GenerationResult], int]:
        by_id: Dict[str, Component] = {}
        for component in components:
            by_id.setdefault(component.id, component)
        link_index = build_link_index(plan, by_id.values())
        model_hint = self.config.generation.model_hint
        overview_request = self.prompt_builder.build_overview_request(
            repository, plan, model_hint=model_hint
        )

        results: List[GenerationResult] = []
        links_created = 0
        total = len(plan.items)
        for position, item in enumerate(plan.items, start=1):
            log.info("Generating %s (%d/%d)", item.doc_path, position, total)
            try:
                result, created = await self._generate_item(
                    repository, plan, item, by_id, link_index, overview_request, session, log
                )
            except Exception as exc:
                log.error("Failed to generate %s: %s", item.doc_path, exc)
                result, created = GenerationResult(doc_path=item.doc_path, success=False, error=str(exc)), 0
            results.append(result)
            links_created += created

            session.progress = SessionProgress(
                completed=position, total=total, current_item=item.doc_path
            )
            try:
                await self.store.update_session(session)
            except Exception as exc:
                log.error("Failed to record progress for %s: %s", item.doc_path, exc)
        return results, links_created

    async def _generate_item(
        self,
        repository: Repository,
        plan: WorkPlan,
        item: WorkPlanItem,
        by_id: Dict[str, Component],
        link_index: Dict[str, str],
        overview_request: GenerationRequest,
        session: GenerationSession,
        log: ProgressLog,
    ) -> Tuple[GenerationResult, int]:
        existing = await self.store.get_document(repository.id, item.doc_path)
        item_components = [by_id[cid] for cid in item.component_ids if cid in by_id]
        if item.is_overview:
            request = overview_request
        else:
            window = await self.context_loader.load_context_window(
                repository.id, item.doc_path, self.config.context
            )
            request = self.prompt_builder.build_item_request(
                item, item_components, window, model_hint=self.config.generation.model_hint
            )

        result = await self.generator.generate(
            repository.id,
            item,
            request,
            components=item_components,
            link_index=link_index,
            plan=plan,
        )
        if not result.success or result.document is None:
            log.error("Generation failed for %s: %s", item.doc_path, result.error)
            return result, 0

        document = result.document
        document.metadata.update(
            {
                "generated_at": utc_timestamp(),
                "session_id": session.id,
                "overwritten": existing is not None,
            }
        )
        saved = await self.store.upsert_document(document)
        result.document = saved
        log.info("%s %s", "Overwrote" if existing else "Created", item.doc_path)

        if result.metrics is not None:
            result.metrics.document_id = saved.id
            result.metrics.session_id = session.id
            try:
                await self.store.save_metrics(result.metrics)
            except Exception as exc:
                log.error("Failed to save metrics for %s: %s", item.doc_path, exc)

        created = 0
        try:
            created = await self._save_links(repository.id, saved.id or "", result)
        except Exception as exc:
            log.error("Failed to save links for %s: %s", item.doc_path, exc)
        return result, created

    async def _save_links(self, repository_id: str, source_id: str, result: GenerationResult) -> int:
        records: List[DocumentLink] = []
        for link in result.links:
            target = await self.store.get_document(repository_id, link.target_path)
            # Targets that have not been generated yet are skipped.
            if target is None or not target.id or target.id == source_id:
                continue
            records.append(
                DocumentLink(
                    source_document_id=source_id,
                    target_document_id=target.id,
                    link_type=link.link_type,
                    context=link.context,
                )
            )
        stored = await self.store.replace_links(source_id, records)
        return len(stored)

    async def _mark_failed(
        self,
        session: GenerationSession,
        repository: Repository | None,
        error: str,
        session_created: bool,
    ) -> None:
        session.status = "failed"
        session.error = error
        session.completed_at = utc_timestamp()
        try:
            if session_created:
                await self.store.update_session(session)
            if repository is not None:
                await self.store.update_repository_status(repository.id, "failed")
            await self.store.flush()
        except Exception as exc:
            self.logger.error("Failed to record session failure for %s: %s", session.id, exc)

    @staticmethod
    def _result(
        success: bool,
        session_id: str,
        results: Sequence[GenerationResult],
        planned: int,
        links_created: int,
        metrics: PipelineMetrics,
        *,
        error: str | None = None,
    ) -> PipelineResult:
        succeeded = [result for result in results if result.success]
        return PipelineResult(
            success=success,
            documents_generated=len(succeeded),
            documents_planned=planned,
            links_created=links_created,
            total_cost=round(sum(r.metrics.cost_estimated for r in succeeded if r.metrics), 6),
            session_id=session_id,
            metrics=metrics,
            error=error,
            failed_items=[result.doc_path for result in results if not result.success],
        )


__all__ = ["Orchestrator"]
