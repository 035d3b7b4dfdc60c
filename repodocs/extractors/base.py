"""Base classes and shared scanning helpers for component extractors."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from bisect import bisect_right
from functools import lru_cache
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import Artifact, Component, ComponentRelation

IMPORT_CONFIDENCE = 0.95
INHERITANCE_CONFIDENCE = 0.9
HOOK_CONFIDENCE = 0.9
CALL_CONFIDENCE = 0.8

_HOOK_CALL = re.compile(r"(?<![\w$.])(use[A-Z][\w$]*)\s*\(")


def make_component_id(parent_path: str, component_type: str, name: str) -> str:
    """Return the deterministic, case-normalised id of a component."""
    return f"{parent_path}.{component_type}.{name}".lower()


class SourceText:
    """Raw artifact text with offset to line-number lookup."""

    def __init__(self, content: str) -> None:
        self.content = content
        self.lines = content.split("\n")
        offsets = [0]
        for line in self.lines[:-1]:
            offsets.append(offsets[-1] + len(line) + 1)
        self._offsets = offsets

    def line_at(self, offset: int) -> int:
        """Return the 1-based line number containing ``offset``."""
        return bisect_right(self._offsets, max(0, offset))


class ComponentExtractor(ABC):
    """Contract for per-language heuristic component extraction.

    Extraction is approximate: declarations are recognised by pattern and
    nesting structure, not by a grammar. Each scan runs independently so a
    construct that trips one scan cannot hide the rest of the file.
    """

    name = "base"
    languages: Tuple[str, ...] = ()

    def __init__(self) -> None:
        self.logger = get_logger(f"extractors.{self.name}")

    def extract_components(self, artifact: Artifact) -> List[Component]:
        """Return the components found in ``artifact``; never raises."""
        content = artifact.content
        if not content or not content.strip():
            return []
        source = SourceText(content)

        imports = self._run_scan("imports", self.detect_imports, artifact, source)
        components: List[Component] = []
        for scan_name, scan in self.scans():
            components.extend(self._run_scan(scan_name, scan, artifact, source))

        for component in components:
            component.relations.extend(imports)
        return components

    @abstractmethod
    def scans(self) -> Sequence[Tuple[str, Callable[[Artifact, SourceText], List]]]:
        """Return the ordered declaration scans for this language."""

    @abstractmethod
    def detect_imports(self, artifact: Artifact, source: SourceText) -> List[ComponentRelation]:
        """Return import relations attached to every component in the file."""

    def _run_scan(
        self,
        scan_name: str,
        scan: Callable[[Artifact, SourceText], List],
        artifact: Artifact,
        source: SourceText,
    ) -> List:
        try:
            return list(scan(artifact, source))
        except Exception as exc:  # a failed scan degrades to "nothing found"
            self.logger.debug("%s scan failed for %s: %s", scan_name, artifact.path, exc)
            return []

    def make_component(
        self,
        artifact: Artifact,
        name: str,
        component_type: str,
        start_line: int,
        end_line: int,
        relations: Iterable[ComponentRelation] = (),
        **metadata: object,
    ) -> Component:
        return Component(
            id=make_component_id(artifact.path, component_type, name),
            name=name,
            type=component_type,
            parent_path=artifact.path,
            start_line=start_line,
            end_line=max(start_line, end_line),
            relations=list(relations),
            metadata={key: value for key, value in metadata.items() if value is not None},
        )


# ----------------------------------------------------------------------
# Brace-language helpers


def iter_code(text: str, start: int = 0) -> Iterator[Tuple[int, str]]:
    """Yield ``(index, char)`` for characters outside string literals and comments."""
    index = start
    length = len(text)
    while index < length:
        char = text[index]
        if char in "\"'`":
            index = _skip_string(text, index)
            continue
        if char == "/" and index + 1 < length:
            following = text[index + 1]
            if following == "/":
                newline = text.find("\n", index)
                index = length if newline == -1 else newline
                continue
            if following == "*":
                closing = text.find("*/", index + 2)
                index = length if closing == -1 else closing + 2
                continue
        yield index, char
        index += 1


def _skip_string(text: str, index: int) -> int:
    quote = text[index]
    cursor = index + 1
    while cursor < len(text):
        char = text[cursor]
        if char == "\\":
            cursor += 2
            continue
        if char == quote:
            return cursor + 1
        if char == "\n" and quote != "`":
            return cursor
        cursor += 1
    return len(text)


_BRACKETS = {"{": "}", "(": ")", "[": "]"}
_OPENERS = {closer: opener for opener, closer in _BRACKETS.items()}


@lru_cache(maxsize=8)
def bracket_table(text: str) -> Dict[int, Optional[int]]:
    """Map each opening bracket in code to its closing index, ``None`` when unclosed.

    Each bracket kind is paired independently of the others.
    """
    table: Dict[int, Optional[int]] = {}
    stacks: Dict[str, List[int]] = {opener: [] for opener in _BRACKETS}
    for index, char in iter_code(text):
        if char in _BRACKETS:
            stacks[char].append(index)
            table[index] = None
        elif char in _OPENERS:
            stack = stacks[_OPENERS[char]]
            if stack:
                table[stack.pop()] = index
    return table


def find_matching(text: str, open_index: int, opener: str = "{", closer: str = "}") -> Optional[int]:
    """Return the index of the bracket closing the one at ``open_index``."""
    if _BRACKETS.get(opener) == closer:
        table = bracket_table(text)
        if open_index in table and text[open_index] == opener:
            return table[open_index]
    # Offsets inside strings or comments are scanned from where they start.
    depth = 0
    for index, char in iter_code(text, open_index):
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def find_body_open(text: str, start: int) -> Optional[int]:
    """Return the first ``{`` outside parentheses after ``start``.

    A ``;`` at parenthesis depth zero ends the search: the declaration has no body.
    """
    paren_depth = 0
    for index, char in iter_code(text, start):
        if char in "([":
            paren_depth += 1
        elif char in ")]":
            paren_depth = max(0, paren_depth - 1)
        elif paren_depth == 0:
            if char == "{":
                return index
            if char == ";":
                return None
    return None


def depth_map(text: str) -> List[int]:
    """Return the brace depth at every offset; -1 marks strings and comments."""
    depths = [-1] * (len(text) + 1)
    depth = 0
    for index, char in iter_code(text):
        depths[index] = depth
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(0, depth - 1)
    depths[len(text)] = depth
    return depths


def scan_calls(body: str, excluded: Iterable[str], pattern: re.Pattern[str]) -> List[ComponentRelation]:
    """Return ``calls`` relations for call-like tokens in ``body``, first occurrence only."""
    skip = set(excluded)
    seen: set[str] = set()
    relations: List[ComponentRelation] = []
    for match in pattern.finditer(body):
        target = match.group(1)
        if target in skip or target in seen:
            continue
        seen.add(target)
        relations.append(ComponentRelation("calls", target, CALL_CONFIDENCE))
    return relations


def scan_hooks(body: str) -> List[ComponentRelation]:
    """Return ``uses`` relations for hook-style calls (``useX(``) in ``body``."""
    seen: set[str] = set()
    relations: List[ComponentRelation] = []
    for match in _HOOK_CALL.finditer(body):
        target = match.group(1)
        if target in seen:
            continue
        seen.add(target)
        relations.append(ComponentRelation("uses", target, HOOK_CONFIDENCE))
    return relations


def dedupe_relations(relations: Iterable[ComponentRelation]) -> List[ComponentRelation]:
    seen: set[tuple[str, str]] = set()
    unique: List[ComponentRelation] = []
    for relation in relations:
        key = (relation.type, relation.target)
        if key in seen:
            continue
        seen.add(key)
        unique.append(relation)
    return unique


__all__ = [
    "CALL_CONFIDENCE",
    "ComponentExtractor",
    "HOOK_CONFIDENCE",
    "IMPORT_CONFIDENCE",
    "INHERITANCE_CONFIDENCE",
    "SourceText",
    "bracket_table",
    "dedupe_relations",
    "depth_map",
    "find_body_open",
    "find_matching",
    "iter_code",
    "make_component_id",
    "scan_calls",
    "scan_hooks",
]
