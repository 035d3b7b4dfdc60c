"""Component extraction for TypeScript and JavaScript sources."""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

from ..models import Artifact, Component, ComponentRelation
from .base import (
    IMPORT_CONFIDENCE,
    INHERITANCE_CONFIDENCE,
    ComponentExtractor,
    SourceText,
    dedupe_relations,
    depth_map,
    find_body_open,
    find_matching,
    scan_calls,
    scan_hooks,
)

_IDENT = r"[A-Za-z_$][\w$]*"
_PARAMS = r"\([^()]*(?:\([^()]*\)[^()]*)*\)"

_CLASS = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?P<default>default\s+)?(?:declare\s+)?(?P<abstract>abstract\s+)?"
    r"class\s+(?P<name>" + _IDENT + r")(?:\s*<[^{]*?>)?"
    r"(?:\s+extends\s+(?P<extends>[\w$.]+)(?:\s*<[^{]*?>)?)?"
    r"(?:\s+implements\s+(?P<implements>[^{]+?))?\s*\{"
)
_METHOD = re.compile(
    r"(?P<mods>(?:(?:public|private|protected|static|async|readonly|override|abstract|get|set)\s+)*)\*?\s*"
    r"(?P<name>" + _IDENT + r")\s*(?:<[^>(){}]*>)?\s*" + _PARAMS + r"\s*(?::\s*[^{};=]+?)?\s*\{"
)
_ARROW_FIELD = re.compile(
    r"(?P<mods>(?:(?:public|private|protected|static|readonly)\s+)*)(?P<name>" + _IDENT + r")\s*"
    r"(?::[^=;]+?)?=\s*(?P<async>async\s+)?(?:" + _PARAMS + r"|" + _IDENT + r")\s*(?::\s*[^=;]+?)?\s*=>"
)
_FUNCTION = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?P<default>default\s+)?(?P<async>async\s+)?"
    r"function\s*\*?\s*(?P<name>" + _IDENT + r")\s*(?:<[^>(]*>)?\s*\("
)
_ARROW = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?:const|let|var)\s+(?P<name>" + _IDENT + r")\s*(?::[^=;]+?)?=\s*"
    r"(?P<async>async\s+)?(?:(?P<fn>function\b)|(?:" + _PARAMS + r"|" + _IDENT + r")\s*(?::\s*[^=;]+?)?\s*=>)"
)
_INTERFACE = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?:declare\s+)?interface\s+(?P<name>" + _IDENT + r")"
    r"(?:\s*<[^{]*?>)?(?:\s+extends\s+(?P<extends>[^{]+?))?\s*\{"
)
_TYPE_ALIAS = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?:declare\s+)?type\s+(?P<name>" + _IDENT + r")\s*(?:<[^=]*?>)?\s*=(?![=>])"
)
_ENUM = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?(?:declare\s+)?(?:const\s+)?enum\s+(?P<name>" + _IDENT + r")\s*\{"
)
_CONSTANT = re.compile(
    r"(?<![\w$.])(?P<export>export\s+)?const\s+(?P<name>[A-Z][A-Z0-9_]*)\b\s*(?::[^=;]+?)?=(?![=>])"
)
_FUNCTION_VALUE = re.compile(r"\s*(?:async\s+)?(?:function\b|" + _PARAMS + r"\s*(?::[^=;]+?)?\s*=>|" + _IDENT + r"\s*=>)")
_NAMED_EXPORT = re.compile(r"(?<![\w$.])export\s*(?:type\s*)?\{(?P<names>[^}]*)\}(?:\s*from\s*['\"](?P<module>[^'\"]+)['\"])?")
_DEFAULT_EXPORT = re.compile(
    r"(?<![\w$.])export\s+default\s+"
    r"(?!(?:class|function|async|abstract|interface|enum|const|let|var|new)\b)(?P<name>" + _IDENT + r")"
)
_ES_IMPORT = re.compile(
    r"(?<![\w$.])import\s+(?:type\s+)?(?P<clause>[\w$*\s{},]+?)\s+from\s+['\"](?P<module>[^'\"]+)['\"]"
)
_REQUIRE = re.compile(
    r"(?<![\w$.])(?:const|let|var)\s+(?P<binding>\{[^}]*\}|" + _IDENT + r")\s*=\s*"
    r"require\(\s*['\"](?P<module>[^'\"]+)['\"]\s*\)"
)
_CALL = re.compile(r"(?<![\w$])(" + _IDENT + r")\s*\(")
_HOOK_NAME = re.compile(r"^use[A-Z]")
_WHITESPACE = re.compile(r"\s*")
_MARKUP = (
    re.compile(r"<[A-Z]"),
    re.compile(r"<>"),
    re.compile(r"return\s*\("),
    re.compile(r"return\s+<[A-Za-z]"),
    re.compile(r"^\(?\s*<[A-Za-z>]"),
)

_CALL_EXCLUSIONS = frozenset(
    {"if", "for", "while", "switch", "catch", "return", "function", "typeof", "super", "constructor"}
)
_METHOD_EXCLUSIONS = _CALL_EXCLUSIONS | {"new", "else", "do", "try", "with", "await", "yield"}


class TypeScriptExtractor(ComponentExtractor):
    """Extracts classes, functions, UI components, hooks and types from TS/JS files."""

    name = "typescript"
    languages = ("typescript", "javascript")

    def scans(self) -> Sequence[Tuple[str, Callable[[Artifact, SourceText], List[Component]]]]:
        return (
            ("classes", self._extract_classes),
            ("functions", self._extract_functions),
            ("types", self._extract_types),
            ("constants", self._extract_constants),
            ("exports", self._extract_exports),
        )

    # ------------------------------------------------------------------
    # Imports

    def detect_imports(self, artifact: Artifact, source: SourceText) -> List[ComponentRelation]:
        text = source.content
        depths = depth_map(text)
        relations: List[ComponentRelation] = []

        for match in _ES_IMPORT.finditer(text):
            if depths[match.start()] < 0:
                continue
            module = match.group("module")
            for name, is_namespace in _parse_import_clause(match.group("clause")):
                target = module if is_namespace else f"{module}.{name}"
                relations.append(ComponentRelation("imports", target, IMPORT_CONFIDENCE))

        for match in _REQUIRE.finditer(text):
            if depths[match.start()] < 0:
                continue
            module = match.group("module")
            binding = match.group("binding")
            if binding.startswith("{"):
                for name in _split_names(binding.strip("{}")):
                    relations.append(ComponentRelation("imports", f"{module}.{name}", 0.9))
            else:
                relations.append(ComponentRelation("imports", f"{module}.{binding}", 0.9))

        return dedupe_relations(relations)

    # ------------------------------------------------------------------
    # Declarations

    def _extract_classes(self, artifact: Artifact, source: SourceText) -> List[Component]:
        text = source.content
        depths = depth_map(text)
        components: List[Component] = []

        for match in _CLASS.finditer(text):
            if depths[match.start()] < 0:
                continue
            name = match.group("name")
            open_index = match.end() - 1
            close_index = find_matching(text, open_index)
            start_line = source.line_at(match.start())
            end_line = source.line_at(close_index) if close_index is not None else start_line

            relations: List[ComponentRelation] = []
            extends = match.group("extends")
            if extends:
                relations.append(ComponentRelation("extends", extends, INHERITANCE_CONFIDENCE))
            implemented = _split_names(_strip_generics(match.group("implements") or ""))
            for target in implemented:
                relations.append(ComponentRelation("implements", target, INHERITANCE_CONFIDENCE))

            components.append(
                self.make_component(
                    artifact,
                    name,
                    "class",
                    start_line,
                    end_line,
                    relations,
                    isExported=bool(match.group("export")),
                    isDefaultExport=bool(match.group("default")) or None,
                    isAbstract=bool(match.group("abstract")),
                    extendsClass=extends,
                    implementsClasses=implemented or None,
                    indentationLevel=depths[match.start()],
                )
            )
            if close_index is not None:
                components.extend(
                    self._extract_methods(artifact, source, name, open_index, close_index, depths)
                )
        return components

    def _extract_methods(
        self,
        artifact: Artifact,
        source: SourceText,
        class_name: str,
        open_index: int,
        close_index: int,
        depths: List[int],
    ) -> List[Component]:
        text = source.content
        member_depth = depths[open_index] + 1
        found: List[Tuple[int, Component]] = []

        for match in _METHOD.finditer(text, open_index + 1, close_index):
            name_start = match.start("name")
            name = match.group("name")
            if depths[name_start] != member_depth or name in _METHOD_EXCLUSIONS:
                continue
            if not _starts_member(text, match.start(), open_index):
                continue
            body_open = match.end() - 1
            body_close = find_matching(text, body_open)
            body = text[body_open : body_close + 1] if body_close is not None else ""
            modifiers = match.group("mods").split()
            found.append(
                (
                    name_start,
                    self.make_component(
                        artifact,
                        name,
                        "function",
                        source.line_at(name_start),
                        source.line_at(body_close) if body_close is not None else source.line_at(name_start),
                        scan_calls(body, _CALL_EXCLUSIONS, _CALL),
                        isExported=False,
                        isAsync="async" in modifiers,
                        isStatic="static" in modifiers or None,
                        isMethod=True,
                        className=class_name,
                        visibility=_visibility(modifiers),
                        indentationLevel=member_depth,
                    ),
                )
            )

        for match in _ARROW_FIELD.finditer(text, open_index + 1, close_index):
            name_start = match.start("name")
            if depths[name_start] != member_depth or not _starts_member(text, match.start(), open_index):
                continue
            body, body_end = _arrow_body(text, match.end())
            modifiers = match.group("mods").split()
            found.append(
                (
                    name_start,
                    self.make_component(
                        artifact,
                        match.group("name"),
                        "function",
                        source.line_at(name_start),
                        source.line_at(body_end),
                        scan_calls(body, _CALL_EXCLUSIONS, _CALL),
                        isExported=False,
                        isAsync=bool(match.group("async")),
                        isArrowFunction=True,
                        isMethod=True,
                        className=class_name,
                        visibility=_visibility(modifiers),
                        indentationLevel=member_depth,
                    ),
                )
            )

        found.sort(key=lambda item: item[0])
        return [component for _, component in found]

    def _extract_functions(self, artifact: Artifact, source: SourceText) -> List[Component]:
        text = source.content
        depths = depth_map(text)
        found: List[Tuple[int, Component]] = []

        for match in _FUNCTION.finditer(text):
            if depths[match.start()] < 0:
                continue
            open_paren = match.end() - 1
            close_paren = find_matching(text, open_paren, "(", ")")
            body, body_end = "", match.start()
            if close_paren is not None:
                body_open = find_body_open(text, close_paren + 1)
                if body_open is not None:
                    body_close = find_matching(text, body_open)
                    if body_close is not None:
                        body, body_end = text[body_open : body_close + 1], body_close
            found.append(
                (match.start(), self._function_like(artifact, source, match, body, body_end, depths, arrow=False))
            )

        for match in _ARROW.finditer(text):
            if depths[match.start()] < 0:
                continue
            if match.group("fn"):
                body, body_end = "", match.start()
                open_paren = text.find("(", match.end())
                close_paren = find_matching(text, open_paren, "(", ")") if open_paren != -1 else None
                if close_paren is not None:
                    body_open = find_body_open(text, close_paren + 1)
                    body_close = find_matching(text, body_open) if body_open is not None else None
                    if body_open is not None and body_close is not None:
                        body, body_end = text[body_open : body_close + 1], body_close
            else:
                body, body_end = _arrow_body(text, match.end())
            found.append(
                (match.start(), self._function_like(artifact, source, match, body, body_end, depths, arrow=True))
            )

        found.sort(key=lambda item: item[0])
        return [component for _, component in found]

    def _function_like(
        self,
        artifact: Artifact,
        source: SourceText,
        match: re.Match[str],
        body: str,
        body_end: int,
        depths: List[int],
        *,
        arrow: bool,
    ) -> Component:
        name = match.group("name")
        component_type = _classify(name, body)
        if component_type == "function":
            relations = scan_calls(body, _CALL_EXCLUSIONS | {name}, _CALL)
        else:
            relations = scan_hooks(body)
        groups = match.groupdict()
        return self.make_component(
            artifact,
            name,
            component_type,
            source.line_at(match.start()),
            source.line_at(body_end),
            relations,
            isExported=bool(groups.get("export")),
            isDefaultExport=bool(groups.get("default")) or None,
            isAsync=bool(groups.get("async")),
            isArrowFunction=(arrow and not groups.get("fn")) or None,
            framework="react" if component_type in {"component", "hook"} else None,
            indentationLevel=depths[match.start()],
        )

    def _extract_types(self, artifact: Artifact, source: SourceText) -> List[Component]:
        text = source.content
        depths = depth_map(text)
        found: List[Tuple[int, Component]] = []

        for match in _INTERFACE.finditer(text):
            if depths[match.start()] < 0:
                continue
            close_index = find_matching(text, match.end() - 1)
            start_line = source.line_at(match.start())
            parents = _split_names(_strip_generics(match.group("extends") or ""))
            relations = [ComponentRelation("extends", parent, INHERITANCE_CONFIDENCE) for parent in parents]
            found.append(
                (
                    match.start(),
                    self.make_component(
                        artifact,
                        match.group("name"),
                        "interface",
                        start_line,
                        source.line_at(close_index) if close_index is not None else start_line,
                        relations,
                        isExported=bool(match.group("export")),
                        extendsInterfaces=parents or None,
                    ),
                )
            )

        for match in _TYPE_ALIAS.finditer(text):
            if depths[match.start()] < 0:
                continue
            start_line = source.line_at(match.start())
            end_line = start_line
            value_start = _WHITESPACE.match(text, match.end()).end()
            if text.startswith("{", value_start):
                close_index = find_matching(text, value_start)
                if close_index is not None:
                    end_line = source.line_at(close_index)
            found.append(
                (
                    match.start(),
                    self.make_component(
                        artifact,
                        match.group("name"),
                        "type",
                        start_line,
                        end_line,
                        isExported=bool(match.group("export")),
                    ),
                )
            )

        for match in _ENUM.finditer(text):
            if depths[match.start()] < 0:
                continue
            close_index = find_matching(text, match.end() - 1)
            start_line = source.line_at(match.start())
            found.append(
                (
                    match.start(),
                    self.make_component(
                        artifact,
                        match.group("name"),
                        "type",
                        start_line,
                        source.line_at(close_index) if close_index is not None else start_line,
                        isExported=bool(match.group("export")),
                        kind="enum",
                    ),
                )
            )

        found.sort(key=lambda item: item[0])
        return [component for _, component in found]

    def _extract_constants(self, artifact: Artifact, source: SourceText) -> List[Component]:
        text = source.content
        depths = depth_map(text)
        components: List[Component] = []
        for match in _CONSTANT.finditer(text):
            if depths[match.start()] != 0:
                continue
            if _FUNCTION_VALUE.match(text, match.end()):
                continue
            start_line = source.line_at(match.start())
            end_line = start_line
            value_start = _WHITESPACE.match(text, match.end()).end()
            opener = text[value_start : value_start + 1]
            if opener in {"{", "["}:
                close_index = find_matching(text, value_start, opener, "}" if opener == "{" else "]")
                if close_index is not None:
                    end_line = source.line_at(close_index)
            components.append(
                self.make_component(
                    artifact,
                    match.group("name"),
                    "constant",
                    start_line,
                    end_line,
                    isExported=bool(match.group("export")),
                )
            )
        return components

    def _extract_exports(self, artifact: Artifact, source: SourceText) -> List[Component]:
        text = source.content
        depths = depth_map(text)
        found: List[Tuple[int, Component]] = []

        for match in _NAMED_EXPORT.finditer(text):
            if depths[match.start()] < 0:
                continue
            line = source.line_at(match.start())
            for entry in match.group("names").split(","):
                entry = entry.strip()
                if entry.startswith("type "):
                    entry = entry[5:].strip()
                if not entry:
                    continue
                parts = re.split(r"\s+as\s+", entry)
                found.append(
                    (
                        match.start(),
                        self.make_component(
                            artifact,
                            parts[0].strip(),
                            "export",
                            line,
                            line,
                            exportType="named",
                            alias=parts[1].strip() if len(parts) > 1 else None,
                            reexportedFrom=match.group("module"),
                        ),
                    )
                )

        for match in _DEFAULT_EXPORT.finditer(text):
            if depths[match.start()] < 0:
                continue
            line = source.line_at(match.start())
            found.append(
                (
                    match.start(),
                    self.make_component(artifact, match.group("name"), "export", line, line, exportType="default"),
                )
            )

        found.sort(key=lambda item: item[0])
        return [component for _, component in found]


def _classify(name: str, body: str) -> str:
    if _HOOK_NAME.match(name):
        return "hook"
    if name[:1].isupper() and any(pattern.search(body.strip()) for pattern in _MARKUP):
        return "component"
    return "function"


def _arrow_body(text: str, arrow_end: int) -> Tuple[str, int]:
    """Return the body text and end offset of an arrow function whose ``=>`` ends at ``arrow_end``."""
    cursor = arrow_end
    while cursor < len(text) and text[cursor] in " \t\r\n":
        cursor += 1
    if cursor >= len(text):
        return "", arrow_end
    opener = text[cursor]
    if opener in "{(":
        close_index = find_matching(text, cursor, opener, "}" if opener == "{" else ")")
        if close_index is not None:
            return text[cursor : close_index + 1], close_index
        return "", arrow_end
    newline = text.find("\n", cursor)
    end = len(text) if newline == -1 else newline
    return text[cursor:end], max(cursor, end - 1)


def _starts_member(text: str, start: int, open_index: int) -> bool:
    """Return True when ``start`` begins a new class member rather than continuing an expression."""
    cursor = start - 1
    while cursor > open_index and text[cursor] in " \t":
        cursor -= 1
    if cursor <= open_index:
        return True
    return text[cursor] in "\n\r;{})"


def _parse_import_clause(clause: str) -> List[Tuple[str, bool]]:
    names: List[Tuple[str, bool]] = []
    braces = re.search(r"\{([^}]*)\}", clause)
    if braces:
        names.extend((name, False) for name in _split_names(braces.group(1)))
    remainder = re.sub(r"\{[^}]*\}", "", clause)
    for piece in remainder.split(","):
        piece = piece.strip()
        if not piece:
            continue
        if piece.startswith("*"):
            names.append((piece, True))
        else:
            names.append((piece, False))
    return names


def _split_names(raw: str) -> List[str]:
    names: List[str] = []
    for part in raw.split(","):
        part = part.strip()
        if part.startswith("type "):
            part = part[5:].strip()
        name = re.split(r"\s+as\s+|\s*:\s*", part)[0].strip()
        if name:
            names.append(name)
    return names


def _strip_generics(raw: str) -> str:
    previous = None
    while previous != raw:
        previous = raw
        raw = re.sub(r"<[^<>]*>", "", raw)
    return raw


def _visibility(modifiers: List[str]) -> Optional[str]:
    for modifier in ("private", "protected", "public"):
        if modifier in modifiers:
            return modifier
    return None


__all__ = ["TypeScriptExtractor"]
