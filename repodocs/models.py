"""Core data models shared across the repodocs pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Dict, List, Mapping, Optional

COMPONENT_TYPES = (
    "class",
    "function",
    "hook",
    "component",
    "service",
    "type",
    "interface",
    "constant",
    "variable",
    "export",
)

RELATION_TYPES = (
    "imports",
    "uses",
    "extends",
    "implements",
    "calls",
    "composes",
    "exposes",
    "depends_on",
)

DOCUMENT_TYPES = ("overview", "module", "class", "service", "component", "system", "workflow")

LINK_TYPES = (
    "imports",
    "uses",
    "depends_on",
    "composes",
    "extends",
    "implements",
    "tests",
    "calls",
    "references",
    "exposes",
)

ARTIFACT_TYPES = ("source", "test", "config", "doc")

SESSION_STATUSES = ("planning", "generating", "completed", "failed")


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string with a Z suffix."""
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class Repository:
    """A repository registered for documentation runs."""

    id: str
    name: str
    ref: str
    default_branch: str = "main"
    language: Optional[str] = None
    analysis_status: str = "pending"
    last_analyzed_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Repository":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            ref=str(data.get("ref", "")),
            default_branch=str(data.get("default_branch") or "main"),
            language=data.get("language"),
            analysis_status=str(data.get("analysis_status") or "pending"),
            last_analyzed_at=data.get("last_analyzed_at"),
        )


@dataclass
class Artifact:
    """One discovered source file."""

    id: str
    path: str
    language: str
    size: int
    hash: str
    type: str = "source"
    content: Optional[str] = None

    def as_record(self) -> Dict[str, Any]:
        """Return the persisted form, which never carries the raw content."""
        data = asdict(self)
        data.pop("content", None)
        return data


@dataclass(frozen=True)
class ComponentRelation:
    """Directed, confidence-scored edge from a component to a named entity."""

    type: str
    target: str
    confidence: float

    def __post_init__(self) -> None:
        clamped = min(1.0, max(0.0, float(self.confidence)))
        object.__setattr__(self, "confidence", clamped)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ComponentRelation":
        return cls(
            type=str(data.get("type", "")),
            target=str(data.get("target", "")),
            confidence=float(data.get("confidence", 0.0)),
        )


@dataclass
class Component:
    """One named logical unit found inside an artifact."""

    id: str
    name: str
    type: str
    parent_path: str
    start_line: int
    end_line: int
    relations: List[ComponentRelation] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def line_span(self) -> int:
        return max(0, self.end_line - self.start_line)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Component":
        relations = data.get("relations") or []
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            parent_path=str(data.get("parent_path", "")),
            start_line=int(data.get("start_line", 0)),
            end_line=int(data.get("end_line", 0)),
            relations=[ComponentRelation.from_dict(item) for item in relations if isinstance(item, Mapping)],
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class WorkPlanItem:
    """One planned output document."""

    doc_path: str
    title: str
    component_ids: List[str]
    document_type: str
    priority: int
    estimated_tokens: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_overview(self) -> bool:
        return self.document_type == "overview"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkPlanItem":
        return cls(
            doc_path=str(data["doc_path"]),
            title=str(data.get("title", "")),
            component_ids=[str(item) for item in data.get("component_ids") or []],
            document_type=str(data.get("document_type", "module")),
            priority=int(data.get("priority", 5)),
            estimated_tokens=int(data.get("estimated_tokens", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class WorkPlan:
    """Ordered set of documents to generate for one run."""

    repository_id: str
    session_type: str
    items: List[WorkPlanItem]
    total_estimated_tokens: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def doc_paths(self) -> List[str]:
        return [item.doc_path for item in self.items]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkPlan":
        return cls(
            repository_id=str(data.get("repository_id", "")),
            session_type=str(data.get("session_type", "full")),
            items=[WorkPlanItem.from_dict(item) for item in data.get("items") or []],
            total_estimated_tokens=int(data.get("total_estimated_tokens", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ContextDocument:
    """Summary of a previously generated document offered as context."""

    id: str
    title: str
    document_path: str
    summary: str
    document_type: str
    relevance_score: float


@dataclass
class ContextWindow:
    """Bounded set of prior document summaries used to guide generation."""

    documents: List[ContextDocument] = field(default_factory=list)
    total_tokens: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContextWindow":
        documents = [
            ContextDocument(
                id=str(item["id"]),
                title=str(item.get("title", "")),
                document_path=str(item.get("document_path", "")),
                summary=str(item.get("summary", "")),
                document_type=str(item.get("document_type", "module")),
                relevance_score=float(item.get("relevance_score", 0.0)),
            )
            for item in data.get("documents") or []
            if isinstance(item, Mapping)
        ]
        return cls(
            documents=documents,
            total_tokens=int(data.get("total_tokens", 0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Document:
    """A generated documentation page, upserted by (repository_id, document_path)."""

    repository_id: str
    document_path: str
    title: str
    content: str
    summary: str
    document_type: str
    component_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Document":
        return cls(
            repository_id=str(data.get("repository_id", "")),
            document_path=str(data["document_path"]),
            title=str(data.get("title", "")),
            content=str(data.get("content", "")),
            summary=str(data.get("summary") or ""),
            document_type=str(data.get("document_type", "module")),
            component_ids=[str(item) for item in data.get("component_ids") or []],
            metadata=dict(data.get("metadata") or {}),
            id=data.get("id"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class PlannedLink:
    """Cross-reference from a generated document to another planned document."""

    target_path: str
    link_type: str
    context: Optional[str] = None


@dataclass
class DocumentLink:
    """Persisted cross-reference between two stored documents."""

    source_document_id: str
    target_document_id: str
    link_type: str
    context: Optional[str] = None


@dataclass
class GenerationMetrics:
    """Cost and latency of one completion call."""

    model_used: str
    tokens_input: int
    tokens_output: int
    cost_estimated: float
    generation_time_ms: int
    document_id: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class SessionProgress:
    completed: int = 0
    total: int = 0
    current_item: Optional[str] = None


@dataclass
class GenerationSession:
    """Authoritative record of one pipeline run."""

    id: str
    repository_id: str
    session_type: str
    status: str = "planning"
    work_plan: Optional[WorkPlan] = None
    progress: SessionProgress = field(default_factory=SessionProgress)
    started_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)
    completed_at: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationSession":
        plan = data.get("work_plan")
        progress = data.get("progress") or {}
        return cls(
            id=str(data["id"]),
            repository_id=str(data.get("repository_id", "")),
            session_type=str(data.get("session_type", "full")),
            status=str(data.get("status", "planning")),
            work_plan=WorkPlan.from_dict(plan) if isinstance(plan, Mapping) else None,
            progress=SessionProgress(
                completed=int(progress.get("completed", 0)),
                total=int(progress.get("total", 0)),
                current_item=progress.get("current_item"),
            ),
            started_at=str(data.get("started_at") or utc_timestamp()),
            updated_at=str(data.get("updated_at") or utc_timestamp()),
            completed_at=data.get("completed_at"),
            error=data.get("error"),
        )


@dataclass
class GenerationResult:
    """Outcome of generating one work-plan item."""

    doc_path: str
    success: bool
    document: Optional[Document] = None
    links: List[PlannedLink] = field(default_factory=list)
    metrics: Optional[GenerationMetrics] = None
    error: Optional[str] = None


@dataclass
class PipelineMetrics:
    discovery_ms: int = 0
    extraction_ms: int = 0
    planning_ms: int = 0
    generation_ms: int = 0
    total_ms: int = 0
    components_extracted: int = 0
    artifacts_discovered: int = 0
    documents_pruned: int = 0


@dataclass
class PipelineResult:
    """Aggregate outcome of one pipeline run."""

    success: bool
    documents_generated: int
    documents_planned: int
    links_created: int
    total_cost: float
    session_id: str
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)
    error: Optional[str] = None
    failed_items: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "ARTIFACT_TYPES",
    "Artifact",
    "COMPONENT_TYPES",
    "Component",
    "ComponentRelation",
    "ContextDocument",
    "ContextWindow",
    "DOCUMENT_TYPES",
    "Document",
    "DocumentLink",
    "GenerationMetrics",
    "GenerationResult",
    "GenerationSession",
    "LINK_TYPES",
    "PipelineMetrics",
    "PipelineResult",
    "PlannedLink",
    "RELATION_TYPES",
    "Repository",
    "SESSION_STATUSES",
    "SessionProgress",
    "WorkPlan",
    "WorkPlanItem",
    "utc_timestamp",
]
