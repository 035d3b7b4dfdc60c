"""Component extraction for Python sources using indentation tracking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ..models import Artifact, Component, ComponentRelation
from .base import (
    IMPORT_CONFIDENCE,
    INHERITANCE_CONFIDENCE,
    ComponentExtractor,
    SourceText,
    dedupe_relations,
    scan_calls,
)

_CLASS = re.compile(r"^(?P<indent>[ \t]*)class\s+(?P<name>[A-Za-z_]\w*)\s*(?P<rest>[(:].*)?$")
_DEF = re.compile(r"^(?P<indent>[ \t]*)(?P<async>async\s+)?def\s+(?P<name>[A-Za-z_]\w*)\s*\(")
_DECORATOR = re.compile(r"^[ \t]*@(?P<name>[\w.]+)")
_CONSTANT = re.compile(r"^(?P<name>[A-Z][A-Z0-9_]*)\s*(?::[^=]+)?=(?!=)")
_TYPE_ALIAS = re.compile(
    r"^(?:type\s+(?P<stmt>[A-Z]\w*)(?:\[[^\]]*\])?\s*=|(?P<name>[A-Z][a-z]\w*)\s*(?::\s*(?P<alias>TypeAlias)\s*)?=\s*(?P<rhs>.*))"
)
_TYPING_RHS = re.compile(
    r"^(?:typing\.)?(?:Union|Optional|Literal|Callable|Dict|List|Tuple|Set|Mapping|Sequence|Iterable|"
    r"TypeVar|NewType|Annotated|ParamSpec|dict|list|tuple|set|frozenset)\b"
)
_ALL = re.compile(r"^__all__\s*(?::[^=]+)?[+]?=\s*")
_IMPORT = re.compile(r"^[ \t]*import\s+(?P<names>.+)$")
_FROM_IMPORT = re.compile(r"^[ \t]*from\s+(?P<module>[.\w]+)\s+import\s+(?P<names>.+)$")
_CALL = re.compile(r"(?<![\w])(?<!def )(?<!class )([A-Za-z_]\w*)\s*\(")
_STRING_NAME = re.compile(r"['\"]([A-Za-z_]\w*)['\"]")

_CALL_EXCLUSIONS = frozenset(
    {
        "if",
        "elif",
        "while",
        "for",
        "with",
        "return",
        "not",
        "and",
        "or",
        "in",
        "is",
        "lambda",
        "yield",
        "assert",
        "del",
        "except",
        "await",
        "print",
        "super",
    }
)
_IGNORED_BASES = {"object"}
_INTERFACE_BASES = {"Protocol", "typing.Protocol"}
_ABSTRACT_BASES = {"ABC", "abc.ABC"}


@dataclass
class _Scope:
    indent: int
    kind: str
    name: str
    end_index: int


class PythonExtractor(ComponentExtractor):
    """Extracts classes, functions, constants, type aliases and ``__all__`` exports."""

    name = "python"
    languages = ("python",)

    def scans(self) -> Sequence[Tuple[str, Callable[[Artifact, SourceText], List[Component]]]]:
        return (
            ("declarations", self._extract_declarations),
            ("constants", self._extract_constants),
            ("exports", self._extract_exports),
        )

    def detect_imports(self, artifact: Artifact, source: SourceText) -> List[ComponentRelation]:
        lines = source.lines
        in_string = _string_mask(lines)
        relations: List[ComponentRelation] = []
        index = 0
        while index < len(lines):
            if in_string[index]:
                index += 1
                continue
            line = _strip_comment(lines[index])
            from_match = _FROM_IMPORT.match(line)
            if from_match:
                names, index = _collect_import_names(lines, index, from_match.group("names"))
                module = from_match.group("module")
                for name in names:
                    if name == "*":
                        relations.append(ComponentRelation("imports", module, 0.6))
                    elif module.endswith("."):
                        relations.append(ComponentRelation("imports", f"{module}{name}", IMPORT_CONFIDENCE))
                    else:
                        relations.append(ComponentRelation("imports", f"{module}.{name}", IMPORT_CONFIDENCE))
                continue
            import_match = _IMPORT.match(line)
            if import_match:
                for name in _split_import_names(import_match.group("names")):
                    relations.append(ComponentRelation("imports", name, IMPORT_CONFIDENCE))
            index += 1
        return dedupe_relations(relations)

    # ------------------------------------------------------------------
    # Declarations

    def _extract_declarations(self, artifact: Artifact, source: SourceText) -> List[Component]:
        lines = source.lines
        in_string = _string_mask(lines)
        components: List[Component] = []
        scopes: List[_Scope] = []

        for index, line in enumerate(lines):
            if in_string[index]:
                continue
            class_match = _CLASS.match(line)
            def_match = None if class_match else _DEF.match(line)
            match = class_match or def_match
            if match is None:
                continue

            indent = _indent_width(match.group("indent"))
            while scopes and (scopes[-1].indent >= indent or scopes[-1].end_index < index):
                scopes.pop()
            parent = scopes[-1] if scopes else None

            header_end = _header_end(lines, index)
            end_index = _block_end(lines, in_string, header_end, indent)
            decorators = _decorators(lines, index)
            name = match.group("name")

            if class_match:
                component = self._class_component(
                    artifact, lines, index, header_end, end_index, name, decorators, len(scopes)
                )
                kind = "class"
            else:
                body = _block_text(lines, index, header_end, end_index)
                is_method = parent is not None and parent.kind == "class"
                component = self.make_component(
                    artifact,
                    name,
                    "function",
                    index + 1,
                    end_index + 1,
                    scan_calls(body, _CALL_EXCLUSIONS, _CALL),
                    isExported=not is_method and not name.startswith("_"),
                    isAsync=bool(def_match.group("async")),
                    decorators=decorators or None,
                    indentationLevel=len(scopes),
                    isMethod=is_method or None,
                    className=parent.name if is_method else None,
                    isStatic=("staticmethod" in decorators) or None,
                    isProperty=("property" in decorators) or None,
                )
                kind = "function"

            components.append(component)
            scopes.append(_Scope(indent=indent, kind=kind, name=name, end_index=end_index))
        return components

    def _class_component(
        self,
        artifact: Artifact,
        lines: List[str],
        index: int,
        header_end: int,
        end_index: int,
        name: str,
        decorators: List[str],
        level: int,
    ) -> Component:
        header = " ".join(line.strip() for line in lines[index : header_end + 1])
        bases, keywords = _class_bases(header)
        relations = [
            ComponentRelation("extends", base, INHERITANCE_CONFIDENCE)
            for base in bases
            if base not in _IGNORED_BASES
        ]
        is_interface = any(base in _INTERFACE_BASES for base in bases)
        is_abstract = any(base in _ABSTRACT_BASES for base in bases) or "ABCMeta" in keywords.get(
            "metaclass", ""
        )
        return self.make_component(
            artifact,
            name,
            "interface" if is_interface else "class",
            index + 1,
            end_index + 1,
            relations,
            isExported=not name.startswith("_"),
            isAbstract=is_abstract,
            extendsClass=bases[0] if bases else None,
            decorators=decorators or None,
            isDataclass=("dataclass" in decorators or "dataclasses.dataclass" in decorators) or None,
            indentationLevel=level,
        )

    def _extract_constants(self, artifact: Artifact, source: SourceText) -> List[Component]:
        lines = source.lines
        in_string = _string_mask(lines)
        components: List[Component] = []
        for index, line in enumerate(lines):
            if in_string[index] or not line or line[0] in " \t":
                continue
            constant = _CONSTANT.match(line)
            if constant:
                end_index = _statement_end(lines, index)
                rhs = line[constant.end() :].strip()
                components.append(
                    self.make_component(
                        artifact,
                        constant.group("name"),
                        "type" if _TYPING_RHS.match(rhs) else "constant",
                        index + 1,
                        end_index + 1,
                        isExported=True,
                    )
                )
                continue
            alias = _TYPE_ALIAS.match(line)
            if alias is None:
                continue
            alias_name = alias.group("stmt") or alias.group("name")
            if not alias.group("stmt") and not alias.group("alias"):
                if not _TYPING_RHS.match(alias.group("rhs") or ""):
                    continue
            components.append(
                self.make_component(
                    artifact,
                    alias_name,
                    "type",
                    index + 1,
                    _statement_end(lines, index) + 1,
                    isExported=True,
                )
            )
        return components

    def _extract_exports(self, artifact: Artifact, source: SourceText) -> List[Component]:
        lines = source.lines
        components: List[Component] = []
        for index, line in enumerate(lines):
            match = _ALL.match(line)
            if match is None:
                continue
            end_index = _statement_end(lines, index)
            text = " ".join(lines[index : end_index + 1])
            for name_match in _STRING_NAME.finditer(text[match.end() :]):
                components.append(
                    self.make_component(
                        artifact,
                        name_match.group(1),
                        "export",
                        index + 1,
                        end_index + 1,
                        exportType="__all__",
                    )
                )
        return components


# ----------------------------------------------------------------------
# Line helpers


def _indent_width(indent: str) -> int:
    return len(indent.expandtabs(4))


def _strip_comment(line: str) -> str:
    position = line.find("#")
    if position == -1:
        return line
    # A hash inside quotes is not a comment; keep the line untouched in that case.
    if line.count('"', 0, position) % 2 or line.count("'", 0, position) % 2:
        return line
    return line[:position].rstrip()


def _string_mask(lines: Sequence[str]) -> List[bool]:
    """Return, per line, whether the line starts inside a triple-quoted string."""
    mask: List[bool] = []
    delimiter: Optional[str] = None
    for line in lines:
        mask.append(delimiter is not None)
        cursor = 0
        while True:
            if delimiter is None:
                positions = [
                    (line.find(quote, cursor), quote)
                    for quote in ('"""', "'''")
                    if line.find(quote, cursor) != -1
                ]
                if not positions:
                    break
                comment = line.find("#", cursor)
                position, quote = min(positions)
                if comment != -1 and comment < position:
                    break
                delimiter = quote
                cursor = position + 3
            else:
                closing = line.find(delimiter, cursor)
                if closing == -1:
                    break
                delimiter = None
                cursor = closing + 3
    return mask


def _header_end(lines: Sequence[str], start: int) -> int:
    """Return the index of the line ending a (possibly multi-line) def/class header."""
    depth = 0
    for index in range(start, min(len(lines), start + 50)):
        line = _strip_comment(lines[index])
        for char in line:
            if char in "([{":
                depth += 1
            elif char in ")]}":
                depth -= 1
        if depth <= 0 and line.rstrip().endswith(":"):
            return index
        if depth <= 0 and ":" in line and index == start and not line.rstrip().endswith(","):
            # One-line body such as ``def f(): return 1``.
            return index
    return start


def _block_end(lines: Sequence[str], in_string: Sequence[bool], header_end: int, indent: int) -> int:
    end = header_end
    for index in range(header_end + 1, len(lines)):
        if in_string[index]:
            end = index
            continue
        stripped = lines[index].strip()
        if not stripped or stripped.startswith("#"):
            continue
        if _indent_width(lines[index][: len(lines[index]) - len(lines[index].lstrip())]) > indent:
            end = index
            continue
        break
    return end


def _block_text(lines: Sequence[str], start: int, header_end: int, end_index: int) -> str:
    header_tail = lines[header_end].split(":", 1)[1] if ":" in lines[header_end] else ""
    body_lines = [header_tail] if header_end == start else []
    body_lines.extend(lines[header_end + 1 : end_index + 1])
    return "\n".join(body_lines)


def _statement_end(lines: Sequence[str], start: int) -> int:
    depth = 0
    for index in range(start, len(lines)):
        for char in _strip_comment(lines[index]):
            if char in "([{":
                depth += 1
            elif char in ")]}":
                depth -= 1
        if depth <= 0 and not lines[index].rstrip().endswith("\\"):
            return index
    return start


def _decorators(lines: Sequence[str], index: int) -> List[str]:
    """Return decorator names on the contiguous lines directly above ``index``."""
    names: List[str] = []
    cursor = index - 1
    while cursor >= 0:
        match = _DECORATOR.match(lines[cursor])
        if match is None:
            break
        names.append(match.group("name"))
        cursor -= 1
    names.reverse()
    return names


def _class_bases(header: str) -> Tuple[List[str], dict[str, str]]:
    open_index = header.find("(")
    if open_index == -1:
        return [], {}
    depth = 0
    close_index = len(header)
    for position in range(open_index, len(header)):
        if header[position] == "(":
            depth += 1
        elif header[position] == ")":
            depth -= 1
            if depth == 0:
                close_index = position
                break
    inner = header[open_index + 1 : close_index]

    parts: List[str] = []
    depth = 0
    current = ""
    for char in inner:
        if char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
        if char == "," and depth == 0:
            parts.append(current)
            current = ""
            continue
        current += char
    parts.append(current)

    bases: List[str] = []
    keywords: dict[str, str] = {}
    for part in parts:
        part = part.strip()
        if not part:
            continue
        if "=" in part:
            key, _, value = part.partition("=")
            keywords[key.strip()] = value.strip()
            continue
        base = part.split("[", 1)[0].strip()
        if base and not base.startswith("*"):
            bases.append(base)
    return bases, keywords


def _collect_import_names(lines: Sequence[str], index: int, names: str) -> Tuple[List[str], int]:
    text = _strip_comment(names)
    cursor = index
    if "(" in text:
        while ")" not in text and cursor + 1 < len(lines):
            cursor += 1
            text += " " + _strip_comment(lines[cursor])
    else:
        while text.rstrip().endswith("\\") and cursor + 1 < len(lines):
            cursor += 1
            text = text.rstrip()[:-1] + " " + _strip_comment(lines[cursor])
    text = text.replace("(", " ").replace(")", " ")
    return _split_import_names(text), cursor + 1


def _split_import_names(raw: str) -> List[str]:
    names: List[str] = []
    for part in raw.split(","):
        name = re.split(r"\s+as\s+", part.strip())[0].strip()
        if name:
            names.append(name)
    return names


__all__ = ["PythonExtractor"]
