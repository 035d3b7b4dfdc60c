"""Work-plan construction: groups extracted components into output documents."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .logging import get_logger
from .models import Component, WorkPlan, WorkPlanItem, utc_timestamp

OVERVIEW_DOC_PATH = "overview"
OVERVIEW_TITLE = "Project Overview"
OVERVIEW_TOKENS = 500

_SERVICE_KEYWORDS = (
    "service",
    "manager",
    "handler",
    "controller",
    "client",
    "api",
    "generator",
    "processor",
    "validator",
    "helper",
    "utils",
    "factory",
    "builder",
)
_GENERIC_NAMES = {"main", "app", "index", "init"}
_LANGUAGE_BY_EXTENSION = {
    "ts": "TypeScript",
    "tsx": "TypeScript",
    "js": "JavaScript",
    "jsx": "JavaScript",
    "mjs": "JavaScript",
    "cjs": "JavaScript",
    "py": "Python",
    "pyi": "Python",
    "java": "Java",
}


@dataclass(frozen=True)
class GroupingRule:
    type: str
    weight: float
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PlanningStrategy:
    """Describes how components are grouped into documents."""

    key: str
    name: str
    max_components_per_doc: int
    max_tokens_per_doc: int
    grouping_rules: Sequence[GroupingRule] = ()


_STRATEGIES: Dict[str, PlanningStrategy] = {
    "file-based": PlanningStrategy(
        key="file-based",
        name="File-based Strategy",
        max_components_per_doc=10,
        max_tokens_per_doc=3000,
        grouping_rules=(
            GroupingRule("file", 0.6, {"mergeSmallFiles": True}),
            GroupingRule("component_type", 0.2, {"separateByType": True}),
            GroupingRule("size", 0.2, {"minComponentsPerDoc": 2}),
        ),
    ),
    "component-based": PlanningStrategy(
        key="component-based",
        name="Component-based Strategy",
        max_components_per_doc=8,
        max_tokens_per_doc=3500,
        grouping_rules=(
            GroupingRule("component_type", 0.4, {"separateClasses": True, "separateServices": True}),
            GroupingRule("namespace", 0.3, {"groupRelated": True}),
            GroupingRule("complexity", 0.2, {"separateComplex": True}),
            GroupingRule("size", 0.1, {"minComponentsPerDoc": 1}),
        ),
    ),
}
DEFAULT_STRATEGY = "component-based"


@dataclass
class _Group:
    doc_path: str
    title: str
    components: List[Component]
    document_type: str
    metadata: Dict[str, Any]


class Planner:
    """Partitions a repository's components into an ordered work plan."""

    def __init__(self) -> None:
        self.logger = get_logger("planner")

    @staticmethod
    def strategies() -> List[PlanningStrategy]:
        return list(_STRATEGIES.values())

    @staticmethod
    def get_strategy(name: str | None) -> Optional[PlanningStrategy]:
        if name is None:
            return None
        return _STRATEGIES.get(name)

    def create_work_plan(
        self,
        repository_id: str,
        components: Sequence[Component],
        session_type: str = "full",
        strategy: str = DEFAULT_STRATEGY,
    ) -> WorkPlan:
        """Return the work plan for ``components``; the overview item is always first."""
        selected = _STRATEGIES.get(strategy) or _STRATEGIES[DEFAULT_STRATEGY]
        unique = _unique_components(components)
        if len(unique) != len(components):
            self.logger.debug(
                "Ignoring %d duplicate component ids", len(components) - len(unique)
            )

        if selected.key == "file-based":
            groups = self._group_by_file(unique)
        else:
            groups = self._group_logically(unique)

        files = _unique_files(unique)
        items: List[WorkPlanItem] = [
            WorkPlanItem(
                doc_path=OVERVIEW_DOC_PATH,
                title=OVERVIEW_TITLE,
                component_ids=[],
                document_type="overview",
                priority=1,
                estimated_tokens=OVERVIEW_TOKENS,
                metadata={
                    "isOverview": True,
                    "totalFiles": len(files),
                    "totalComponents": len(unique),
                    "mainLanguages": _main_languages(unique),
                },
            )
        ]
        used_paths: Set[str] = {OVERVIEW_DOC_PATH}
        for group in groups:
            group.doc_path = _claim_doc_path(group, used_paths)
            items.append(self._create_item(group))

        items.sort(key=lambda item: (item.priority, len(item.doc_path.split("."))))
        plan = WorkPlan(
            repository_id=repository_id,
            session_type=session_type,
            items=items,
            total_estimated_tokens=sum(item.estimated_tokens for item in items),
            metadata={
                "totalComponents": len(unique),
                "totalFiles": len(files),
                "planningStrategy": selected.name,
                "languages": _main_languages(unique, limit=None),
                "createdAt": utc_timestamp(),
            },
        )
        self.logger.debug(
            "Planned %d documents for %d components using %s",
            len(items),
            len(unique),
            selected.name,
        )
        return plan

    # ------------------------------------------------------------------
    # Grouping strategies

    def _group_logically(self, components: List[Component]) -> List[_Group]:
        groups: List[_Group] = []
        claimed: Set[str] = set()

        for component in components:
            if component.type != "class" or component.id in claimed:
                continue
            groups.append(self._claim(component, components, claimed, "class", "class-based"))

        for component in components:
            if component.type != "function" or component.id in claimed:
                continue
            if not is_service_function(component):
                continue
            groups.append(self._claim(component, components, claimed, "service", "service-based"))

        remaining: Dict[str, List[Component]] = {}
        for component in components:
            if component.id not in claimed:
                remaining.setdefault(component.parent_path, []).append(component)

        for file_path, file_components in remaining.items():
            primary = find_primary_component(file_components)
            if primary is not None:
                doc_path = logical_doc_path(primary, file_path)
            else:
                doc_path = file_doc_path(file_path)
            groups.append(
                _Group(
                    doc_path=doc_path,
                    title=module_title(file_components, file_path),
                    components=file_components,
                    document_type=infer_document_type(file_components),
                    metadata={
                        "primaryComponent": primary.name if primary else None,
                        "groupingRule": "module-based",
                        "sourceFile": file_path,
                    },
                )
            )
        return groups

    def _claim(
        self,
        primary: Component,
        components: List[Component],
        claimed: Set[str],
        document_type: str,
        rule: str,
    ) -> _Group:
        related = [
            candidate
            for candidate in find_related_components(primary, components)
            if candidate.id not in claimed
        ]
        claimed.add(primary.id)
        claimed.update(candidate.id for candidate in related)
        return _Group(
            doc_path=logical_doc_path(primary, primary.parent_path),
            title=component_title(primary),
            components=[primary, *related],
            document_type=document_type,
            metadata={
                "primaryComponent": primary.name,
                "componentType": primary.type,
                "groupingRule": rule,
                "sourceFile": primary.parent_path,
            },
        )

    def _group_by_file(self, components: List[Component]) -> List[_Group]:
        by_file: Dict[str, List[Component]] = {}
        for component in components:
            by_file.setdefault(component.parent_path, []).append(component)
        return [
            _Group(
                doc_path=file_doc_path(file_path),
                title=path_title(file_path),
                components=file_components,
                document_type=infer_document_type(file_components),
                metadata={"filePath": file_path, "groupingRule": "file", "sourceFile": file_path},
            )
            for file_path, file_components in by_file.items()
        ]

    def _create_item(self, group: _Group) -> WorkPlanItem:
        metadata = dict(group.metadata)
        metadata.update(
            {
                "componentCount": len(group.components),
                "componentTypes": list(dict.fromkeys(c.type for c in group.components)),
                "hasExports": any(c.type == "export" for c in group.components),
                "complexity": _complexity(group.components),
            }
        )
        return WorkPlanItem(
            doc_path=group.doc_path,
            title=group.title,
            component_ids=[component.id for component in group.components],
            document_type=group.document_type,
            priority=calculate_priority(group.components, group.doc_path),
            estimated_tokens=estimate_tokens(group.components),
            metadata=metadata,
        )


# ----------------------------------------------------------------------
# Heuristics


def is_service_function(component: Component) -> bool:
    """Return True when a function looks substantial enough for its own document."""
    name = component.name.lower()
    if any(keyword in name for keyword in _SERVICE_KEYWORDS):
        return True
    substantial = len(component.relations) >= 3 or component.line_span > 10
    return substantial and bool(component.metadata.get("isExported"))


def is_component_related(primary: Component, candidate: Component) -> bool:
    primary_name = primary.name.lower()
    candidate_name = candidate.name.lower()
    if candidate_name in primary_name or primary_name in candidate_name:
        return True
    if primary.type == "class" and candidate.type == "function":
        if candidate.metadata.get("className") == primary.name:
            return True
        indent = candidate.metadata.get("indentationLevel") or 0
        inside = primary.start_line < candidate.start_line <= max(primary.end_line, primary.start_line)
        if indent > 0 and inside:
            return True
    return False


def find_related_components(primary: Component, components: Iterable[Component]) -> List[Component]:
    """Return same-file methods and constants that belong with ``primary``."""
    related: List[Component] = []
    for candidate in components:
        if candidate.parent_path != primary.parent_path or candidate.id == primary.id:
            continue
        if candidate.type == "function":
            if (candidate.metadata.get("indentationLevel") or 0) > 0 and is_component_related(
                primary, candidate
            ):
                related.append(candidate)
        elif candidate.type == "constant" and is_component_related(primary, candidate):
            related.append(candidate)
    return related


def find_primary_component(components: Sequence[Component]) -> Optional[Component]:
    for component in components:
        if component.type == "class":
            return component
    for component in components:
        if component.type == "function" and is_service_function(component):
            return component
    for component in components:
        if component.metadata.get("isExported"):
            return component
    return components[0] if components else None


def infer_document_type(components: Sequence[Component]) -> str:
    types = {component.type for component in components}
    if "class" in types:
        return "class"
    if "component" in types:
        return "component"
    if "service" in types:
        return "service"
    if "hook" in types:
        return "component"
    return "module"


def logical_doc_path(component: Component, file_path: str | None = None) -> str:
    """Derive a doc path from a component name rather than its file path."""
    base = component.name.strip("@_")
    base = re.sub(r"[^a-zA-Z0-9]", "_", base).lower()
    if len(base) < 3 or base in _GENERIC_NAMES:
        stem = _file_stem(file_path or component.parent_path) or "module"
        return f"{stem}_{base}"
    return base


def file_doc_path(file_path: str) -> str:
    dotted = file_path.replace("/", ".")
    return re.sub(r"\.[^.]+$", "", dotted)


def component_title(component: Component) -> str:
    name = component.name.strip("@_")
    spaced = re.sub(r"([A-Z])", r" \1", name)
    spaced = re.sub(r"[_-]", " ", spaced)
    words = [word[:1].upper() + word[1:].lower() for word in spaced.split()]
    return f"{' '.join(words)} {component.type.capitalize()}"


def module_title(components: Sequence[Component], file_path: str) -> str:
    title = path_title(file_path)
    counts = Counter(component.type for component in components)
    dominant = counts.most_common(1)[0][0] if counts else None
    if dominant and dominant != "function":
        return f"{title} {dominant.capitalize()}s"
    return f"{title} Module"


def path_title(file_path: str) -> str:
    stem = _file_stem(file_path) or "Module"
    return " ".join(part[:1].upper() + part[1:] for part in re.split(r"[-_.]", stem) if part)


def estimate_tokens(components: Iterable[Component]) -> int:
    return 200 + sum(50 + 20 * len(component.relations) for component in components)


def calculate_priority(components: Sequence[Component], doc_path: str) -> int:
    priority = 5
    if any(component.type == "export" for component in components):
        priority -= 1
    if any(component.metadata.get("isExported") for component in components):
        priority -= 1
    if len(components) < 3:
        priority += 1
    if "util" in doc_path:
        priority += 1
    return max(1, min(10, priority))


def _complexity(components: Iterable[Component]) -> int:
    return sum(len(c.relations) + c.end_line - c.start_line for c in components)


def _claim_doc_path(group: _Group, used: Set[str]) -> str:
    """Return a doc path unique within the plan, disambiguating collisions by file."""
    candidate = group.doc_path
    if candidate not in used:
        used.add(candidate)
        return candidate
    source = group.metadata.get("sourceFile") or ""
    stem = _file_stem(source)
    if stem and not candidate.startswith(f"{stem}_"):
        prefixed = f"{re.sub(r'[^a-zA-Z0-9]', '_', stem).lower()}_{candidate}"
        if prefixed not in used:
            used.add(prefixed)
            return prefixed
        candidate = prefixed
    suffix = 2
    while f"{candidate}_{suffix}" in used:
        suffix += 1
    unique = f"{candidate}_{suffix}"
    used.add(unique)
    return unique


def _unique_components(components: Iterable[Component]) -> List[Component]:
    seen: Set[str] = set()
    unique: List[Component] = []
    for component in components:
        if component.id in seen:
            continue
        seen.add(component.id)
        unique.append(component)
    return unique


def _unique_files(components: Iterable[Component]) -> List[str]:
    return list(dict.fromkeys(component.parent_path for component in components))


def _main_languages(components: Iterable[Component], limit: int | None = 3) -> List[str]:
    counts: Counter[str] = Counter()
    for component in components:
        extension = PurePosixPath(component.parent_path).suffix.lstrip(".").lower()
        counts[_LANGUAGE_BY_EXTENSION.get(extension, "Unknown")] += 1
    ranked = [language for language, _ in counts.most_common()]
    return ranked if limit is None else ranked[:limit]


def _file_stem(file_path: str) -> str:
    name = file_path.rsplit("/", 1)[-1]
    return re.sub(r"\.[^.]+$", "", name)


__all__ = [
    "DEFAULT_STRATEGY",
    "GroupingRule",
    "OVERVIEW_DOC_PATH",
    "Planner",
    "PlanningStrategy",
    "calculate_priority",
    "component_title",
    "estimate_tokens",
    "file_doc_path",
    "find_primary_component",
    "find_related_components",
    "infer_document_type",
    "is_component_related",
    "is_service_function",
    "logical_doc_path",
    "module_title",
]
