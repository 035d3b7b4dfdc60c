"""Turns generation requests into documents, cross-links and metrics."""

from __future__ import annotations

import time
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import GenerationError
from .llm import CompletionAdapter
from .logging import get_logger
from .models import LINK_TYPES, Component, Document, GenerationMetrics, GenerationResult, PlannedLink, WorkPlan, WorkPlanItem
from .prompting import GenerationRequest, PromptBuilder

FALLBACK_LINK_TYPE = "references"


class DocGenerator:
    """Runs one completion per work-plan item and shapes the result."""

    def __init__(
        self,
        completion: CompletionAdapter,
        prompt_builder: PromptBuilder | None = None,
        *,
        model_hint: str | None = None,
    ) -> None:
        self.completion = completion
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.model_hint = model_hint
        self.logger = get_logger("generator")

    async def generate(
        self,
        repository_id: str,
        item: WorkPlanItem,
        request: GenerationRequest,
        *,
        components: Sequence[Component] = (),
        link_index: Mapping[str, str] | None = None,
        plan: WorkPlan | None = None,
    ) -> GenerationResult:
        """Generate ``item``; completion failures come back as an unsuccessful result."""
        started = time.perf_counter()
        try:
            completion = await self.completion.complete(
                request.prompt, request.model_hint or self.model_hint, system=request.system
            )
            if not completion.text.strip():
                raise GenerationError(f"Completion for {item.doc_path} was empty")
        except GenerationError as exc:
            self.logger.warning("Generation failed for %s: %s", item.doc_path, exc)
            return GenerationResult(doc_path=item.doc_path, success=False, error=str(exc))
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        parsed = self.prompt_builder.parse_response(completion.text, item.title)
        document = Document(
            repository_id=repository_id,
            document_path=item.doc_path,
            title=parsed.title,
            content=parsed.content,
            summary=parsed.summary,
            document_type=item.document_type,
            component_ids=list(item.component_ids),
            metadata=dict(item.metadata),
        )
        metrics = GenerationMetrics(
            model_used=completion.model,
            tokens_input=completion.tokens_in,
            tokens_output=completion.tokens_out,
            cost_estimated=completion.cost_estimate,
            generation_time_ms=elapsed_ms,
        )
        if item.is_overview and plan is not None:
            links = overview_links(plan)
        else:
            links = derive_links(item.doc_path, components, link_index or {})
        return GenerationResult(
            doc_path=item.doc_path,
            success=True,
            document=document,
            links=links,
            metrics=metrics,
        )


def build_link_index(plan: WorkPlan, components: Iterable[Component]) -> Dict[str, str]:
    """Map lowercase component names to the doc path that documents them.

    When a name is documented in several places, the first planned document wins.
    """
    by_id = {component.id: component for component in components}
    index: Dict[str, str] = {}
    for item in plan.items:
        for component_id in item.component_ids:
            component = by_id.get(component_id)
            if component is not None:
                index.setdefault(component.name.lower(), item.doc_path)
    return index


def derive_links(
    doc_path: str, components: Sequence[Component], link_index: Mapping[str, str]
) -> List[PlannedLink]:
    links: List[PlannedLink] = []
    seen: set[Tuple[str, str]] = set()
    for component in components:
        for relation in component.relations:
            target_path = _resolve_target(relation.target, link_index)
            if target_path is None or target_path == doc_path:
                continue
            link_type = relation.type if relation.type in LINK_TYPES else FALLBACK_LINK_TYPE
            key = (target_path, link_type)
            if key in seen:
                continue
            seen.add(key)
            links.append(
                PlannedLink(
                    target_path=target_path,
                    link_type=link_type,
                    context=f"{component.name} {relation.type} {relation.target}",
                )
            )
    return links


def overview_links(plan: WorkPlan) -> List[PlannedLink]:
    return [
        PlannedLink(target_path=item.doc_path, link_type=FALLBACK_LINK_TYPE, context=item.title)
        for item in plan.items
        if not item.is_overview
    ]


def _resolve_target(target: str, link_index: Mapping[str, str]) -> Optional[str]:
    # Import targets are module specifiers; the last path segment names the module.
    candidates = [target, target.rsplit("/", 1)[-1], target.rsplit(".", 1)[-1]]
    for candidate in candidates:
        found = link_index.get(candidate.lower())
        if found:
            return found
    return None


__all__ = ["DocGenerator", "build_link_index", "derive_links", "overview_links"]
