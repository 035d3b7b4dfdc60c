"""Tests for the TypeScript/JavaScript component extractor."""

from __future__ import annotations

import random
import textwrap
import time

from repodocs.extractors import TypeScriptExtractor
from repodocs.models import Artifact, ComponentRelation


def _artifact(path: str, content: str, language: str = "typescript") -> Artifact:
    return Artifact(
        id=f"repo:{path}",
        path=path,
        language=language,
        size=len(content),
        hash="sha",
        content=textwrap.dedent(content).lstrip("\n"),
    )


def test_class_with_base_and_method_yields_class_and_method_components() -> None:
    artifact = _artifact("auth.ts", "export class AuthService extends BaseService { login() {} }\n")

    components = TypeScriptExtractor().extract_components(artifact)

    assert [(c.type, c.name) for c in components] == [("class", "AuthService"), ("function", "login")]
    service, login = components
    assert service.id == "auth.ts.class.authservice"
    assert service.parent_path == "auth.ts"
    assert service.relations == [ComponentRelation("extends", "BaseService", 0.9)]
    assert service.metadata["isExported"] is True
    assert service.metadata["extendsClass"] == "BaseService"
    assert login.id == "auth.ts.function.login"
    assert login.metadata["isMethod"] is True
    assert login.metadata["className"] == "AuthService"
    assert login.metadata["isExported"] is False
    assert login.metadata["indentationLevel"] == 1


def test_hooks_components_and_functions_are_classified() -> None:
    artifact = _artifact(
        "src/ui/login.tsx",
        """
        import React, { useState } from 'react';
        import { api } from './api';

        export function useAuth() {
          const [user, setUser] = useState(null);
          useEffect(() => {
            api.load();
          }, []);
          return user;
        }

        export const LoginButton = () => {
          const user = useAuth();
          return <button>Sign in</button>;
        };

        function formatName(parts) {
          return parts.join(' ');
        }
        """,
    )

    components = {c.name: c for c in TypeScriptExtractor().extract_components(artifact)}

    assert set(components) == {"useAuth", "LoginButton", "formatName"}

    hook = components["useAuth"]
    assert hook.type == "hook"
    assert hook.metadata["framework"] == "react"
    assert hook.metadata["isExported"] is True
    assert [r.target for r in hook.relations if r.type == "uses"] == ["useState", "useEffect"]
    assert all(r.confidence == 0.9 for r in hook.relations if r.type == "uses")

    button = components["LoginButton"]
    assert button.type == "component"
    assert button.metadata["isArrowFunction"] is True
    assert ComponentRelation("uses", "useAuth", 0.9) in button.relations

    helper = components["formatName"]
    assert helper.type == "function"
    assert helper.metadata["isExported"] is False
    assert ComponentRelation("calls", "join", 0.8) in helper.relations


def test_file_imports_are_attached_to_every_component() -> None:
    artifact = _artifact(
        "src/ui/login.tsx",
        """
        import React, { useState } from 'react';
        import { api } from './api';

        export function useAuth() {
          return useState(null);
        }

        function formatName(parts) {
          return parts.join(' ');
        }
        """,
    )

    components = TypeScriptExtractor().extract_components(artifact)

    expected = [
        ComponentRelation("imports", "react.useState", 0.95),
        ComponentRelation("imports", "react.React", 0.95),
        ComponentRelation("imports", "./api.api", 0.95),
    ]
    for component in components:
        assert [r for r in component.relations if r.type == "imports"] == expected


def test_require_bindings_are_imports_with_lower_confidence() -> None:
    artifact = _artifact(
        "server.js",
        """
        const express = require('express');
        const { join } = require('path');

        function start() {
          return express();
        }
        """,
        language="javascript",
    )

    (start,) = TypeScriptExtractor().extract_components(artifact)

    imports = [r for r in start.relations if r.type == "imports"]
    assert imports == [
        ComponentRelation("imports", "express.express", 0.9),
        ComponentRelation("imports", "path.join", 0.9),
    ]
    assert ComponentRelation("calls", "express", 0.8) in start.relations


def test_interfaces_types_enums_and_constants() -> None:
    artifact = _artifact(
        "src/types.ts",
        """
        export interface User extends Entity {
          id: string;
        }

        export type UserId = string;

        enum Role {
          Admin,
          Guest,
        }

        export const MAX_USERS = 10;
        """,
    )

    components = {c.name: c for c in TypeScriptExtractor().extract_components(artifact)}

    assert components["User"].type == "interface"
    assert components["User"].relations == [ComponentRelation("extends", "Entity", 0.9)]
    assert components["User"].start_line == 1
    assert components["User"].end_line == 3
    assert components["UserId"].type == "type"
    assert components["Role"].type == "type"
    assert components["Role"].metadata["kind"] == "enum"
    assert components["MAX_USERS"].type == "constant"
    assert components["MAX_USERS"].metadata["isExported"] is True


def test_named_and_default_exports() -> None:
    artifact = _artifact(
        "src/index.ts",
        """
        export { login, logout as signOut } from './auth';
        export default router;
        """,
    )

    components = TypeScriptExtractor().extract_components(artifact)

    assert [(c.type, c.name) for c in components] == [
        ("export", "login"),
        ("export", "logout"),
        ("export", "router"),
    ]
    assert components[0].metadata["reexportedFrom"] == "./auth"
    assert components[1].metadata["alias"] == "signOut"
    assert components[2].metadata["exportType"] == "default"


def test_declarations_inside_comments_and_strings_are_ignored() -> None:
    artifact = _artifact(
        "src/notes.ts",
        """
        // class Hidden {}
        /* function ghost() {} */
        const text = "class Quoted {}";
        """,
    )

    assert TypeScriptExtractor().extract_components(artifact) == []


def test_empty_content_yields_no_components() -> None:
    assert TypeScriptExtractor().extract_components(_artifact("empty.ts", "   \n")) == []


FRAGMENTS = (
    "class",
    "function",
    "export default",
    "const X = ",
    "interface I extends",
    "type T =",
    "enum E",
    "=>",
    "(",
    ")",
    "{",
    "}",
    "[",
    "]",
    "<",
    ">",
    "'",
    '"',
    "`",
    "${",
    "//",
    "/*",
    "*/",
    "/re`gex/",
    "\\",
    ";",
    "useThing(",
    "import { a } from 'b'",
    "require(",
    "éè",
    "\n",
)


def _garbage(rng: random.Random) -> str:
    return rng.choice((" ", "\n", "")).join(rng.choice(FRAGMENTS) for _ in range(rng.randint(1, 60)))


def test_malformed_input_never_raises() -> None:
    rng = random.Random(1234)
    extractor = TypeScriptExtractor()

    for index in range(300):
        components = extractor.extract_components(_artifact(f"src/garbage{index}.ts", _garbage(rng)))
        assert all(component.start_line <= component.end_line for component in components)


def test_extraction_is_deterministic() -> None:
    content = """
    import { useState } from 'react';

    export interface Props { title: string }
    export const LIMIT = 3;

    export class Store extends Base {
      load() { return fetchAll(); }
      save = async (item) => persist(item);
    }

    export function Panel(props: Props) {
      const [open] = useState(false);
      return <div>{props.title}</div>;
    }
    """
    extractor = TypeScriptExtractor()

    first = extractor.extract_components(_artifact("src/panel.tsx", content))
    second = extractor.extract_components(_artifact("src/panel.tsx", content))

    assert [component.id for component in first] == [component.id for component in second]
    assert len(first) >= 5


def test_unclosed_declarations_are_scanned_in_linear_time() -> None:
    content = "function f(){\n" * 3000
    started = time.perf_counter()

    components = TypeScriptExtractor().extract_components(_artifact("src/unclosed.ts", content))

    assert time.perf_counter() - started < 5.0
    assert len(components) == 3000
    assert {component.name for component in components} == {"f"}
    assert components[-1].start_line == components[-1].end_line == 3000
