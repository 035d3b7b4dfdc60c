"""Builds completion prompts for work-plan items and parses the replies."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..models import Component, ContextWindow, Repository, WorkPlan, WorkPlanItem

SUMMARY_LIMIT = 280
MAX_RELATIONS_PER_COMPONENT = 8

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(?P<title>.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^```[\w-]*\s*\n(?P<body>.*)\n```\s*$", re.S)


@dataclass
class GenerationRequest:
    """A rendered prompt for one work-plan item."""

    doc_path: str
    title: str
    document_type: str
    prompt: str
    system: str
    model_hint: Optional[str] = None
    component_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class ParsedDocument:
    title: str
    content: str
    summary: str


class PromptBuilder:
    """Renders Jinja2 prompt templates for overview and component documents."""

    SYSTEM_PROMPT = (
        "You are a senior developer documentation writer. Stay grounded in the components "
        "you are given, write Markdown, and never invent APIs, files or commands."
    )

    def __init__(self, templates_dir: Path | None = None) -> None:
        self.templates_dir = templates_dir or Path(__file__).with_name("templates")
        self._env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )

    def build_overview_request(
        self,
        repository: Repository,
        plan: WorkPlan,
        *,
        model_hint: str | None = None,
    ) -> GenerationRequest:
        overview = next((item for item in plan.items if item.is_overview), None)
        if overview is None:
            raise ValueError("work plan has no overview item")
        languages = list(overview.metadata.get("mainLanguages") or [])
        sections = [item for item in plan.items if not item.is_overview]
        prompt = self._env.get_template("overview.md.j2").render(
            repository=repository,
            title=overview.title,
            languages=languages,
            total_files=overview.metadata.get("totalFiles", 0),
            total_components=overview.metadata.get("totalComponents", 0),
            sections=sections,
        )
        return GenerationRequest(
            doc_path=overview.doc_path,
            title=overview.title,
            document_type=overview.document_type,
            prompt=prompt.strip(),
            system=self.SYSTEM_PROMPT,
            model_hint=model_hint,
            component_ids=[],
            metadata={"languages": languages},
        )

    def build_item_request(
        self,
        item: WorkPlanItem,
        components: Sequence[Component],
        context_window: ContextWindow | None = None,
        *,
        model_hint: str | None = None,
    ) -> GenerationRequest:
        # The item's own prior version is not useful as context for itself.
        context = [
            doc
            for doc in (context_window.documents if context_window else [])
            if doc.document_path != item.doc_path
        ]
        source_files = sorted({component.parent_path for component in components})
        prompt = self._env.get_template("document.md.j2").render(
            title=item.title,
            doc_path=item.doc_path,
            document_type=item.document_type,
            components=list(components),
            source_files=source_files,
            context=context,
            max_relations=MAX_RELATIONS_PER_COMPONENT,
        )
        return GenerationRequest(
            doc_path=item.doc_path,
            title=item.title,
            document_type=item.document_type,
            prompt=prompt.strip(),
            system=self.SYSTEM_PROMPT,
            model_hint=model_hint,
            component_ids=list(item.component_ids),
            metadata={"contextDocuments": len(context), "sourceFiles": source_files},
        )

    @staticmethod
    def parse_response(text: str, fallback_title: str) -> ParsedDocument:
        """Split a completion into title, Markdown body and a short summary."""
        content = _strip_fence(text.strip())
        title = fallback_title
        for line in content.splitlines():
            if not line.strip():
                continue
            match = _HEADING_RE.match(line)
            if match:
                title = match.group("title").strip() or fallback_title
            break
        return ParsedDocument(title=title, content=content, summary=summarize(content))


def summarize(content: str, limit: int = SUMMARY_LIMIT) -> str:
    """Return the first prose paragraph of ``content``, collapsed to one line."""
    paragraphs = re.split(r"\n\s*\n", content)
    for paragraph in paragraphs:
        lines = [
            line.strip()
            for line in paragraph.splitlines()
            if line.strip() and not _HEADING_RE.match(line) and not line.strip().startswith("```")
        ]
        if not lines:
            continue
        summary = " ".join(lines)
        if len(summary) > limit:
            summary = summary[: limit - 3].rstrip() + "..."
        return summary
    return ""


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group("body").strip() if match else text


__all__ = ["GenerationRequest", "ParsedDocument", "PromptBuilder", "summarize"]
