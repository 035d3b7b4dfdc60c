"""Tests for the local working-tree source adapter."""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path

import pytest

from repodocs.errors import NotFoundError
from repodocs.sources import LocalSource, artifact_type, detect_language, repository_for_path
from tests._fixtures.repo_builder import RepoBuilder


def test_list_files_applies_gitignore_and_binary_rules(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            ".gitignore": "generated/\n",
            "src/app.ts": "export const x = 1;\n",
            "src/util.py": "def f():\n    pass\n",
            "generated/out.ts": "// generated\n",
        }
    )
    (repo_builder.path() / "logo.png").write_bytes(b"\x89PNG")
    (repo_builder.path() / ".repodocs").mkdir()
    (repo_builder.path() / ".repodocs" / "store.json").write_text("{}", encoding="utf-8")

    files = repo_builder.list_files()

    assert [entry.path for entry in files] == [".gitignore", "src/app.ts", "src/util.py"]
    app = files[1]
    assert app.size == len("export const x = 1;\n")
    assert app.content_hash == hashlib.sha256(b"export const x = 1;\n").hexdigest()


def test_list_files_falls_back_to_default_ignores(repo_builder: RepoBuilder) -> None:
    repo_builder.write(
        {
            "index.js": "module.exports = {};\n",
            "node_modules/dep/index.js": "module.exports = {};\n",
            "dist/bundle.js": "var x;\n",
        }
    )

    assert [entry.path for entry in repo_builder.list_files()] == ["index.js"]


def test_exclude_paths_are_applied(repo_builder: RepoBuilder) -> None:
    repo_builder.write({"keep.py": "x = 1\n", "sandbox/tmp.py": "y = 2\n"})

    files = asyncio.run(LocalSource(["sandbox/"]).list_files(str(repo_builder.path())))

    assert [entry.path for entry in files] == ["keep.py"]


def test_missing_repository_raises_not_found(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(LocalSource().list_files(str(tmp_path / "missing")))


def test_file_path_is_not_a_repository(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(NotFoundError):
        asyncio.run(LocalSource().list_files(str(target)))


def test_get_file_content_reads_text_and_rejects_escapes(repo_builder: RepoBuilder, tmp_path: Path) -> None:
    repo_builder.write({"src/app.ts": "const a = 1;\n"})
    (tmp_path / "outside.txt").write_text("secret", encoding="utf-8")
    source = LocalSource()
    root = str(repo_builder.path())

    content = asyncio.run(source.get_file_content(root, "src/app.ts"))
    missing = asyncio.run(source.get_file_content(root, "src/missing.ts"))
    escaped = asyncio.run(source.get_file_content(root, "../outside.txt"))

    assert content is not None
    assert content.content == "const a = 1;\n"
    assert content.size == len(b"const a = 1;\n")
    assert missing is None
    assert escaped is None


def test_invalid_utf8_is_replaced(repo_builder: RepoBuilder) -> None:
    (repo_builder.path() / "data.txt").write_bytes(b"ok \xff end")

    content = asyncio.run(LocalSource().get_file_content(str(repo_builder.path()), "data.txt"))

    assert content is not None
    assert content.content == "ok \ufffd end"


@pytest.mark.parametrize(
    ("path", "language"),
    [
        ("src/app.tsx", "typescript"),
        ("lib/index.mjs", "javascript"),
        ("tool.py", "python"),
        ("Dockerfile", "dockerfile"),
        ("config.yml", "yaml"),
        ("LICENSE", "text"),
        ("archive.unknown", "text"),
    ],
)
def test_detect_language(path: str, language: str) -> None:
    assert detect_language(path) == language


def test_artifact_type_classifies_by_path() -> None:
    assert artifact_type("tests/test_app.py") == "test"
    assert artifact_type("src/app.spec.ts") == "test"
    assert artifact_type("webpack.config.js") == "config"
    assert artifact_type("README.md") == "doc"
    assert artifact_type("src/app.ts") == "source"


def test_repository_for_path_is_stable(tmp_path: Path) -> None:
    first = repository_for_path(tmp_path)
    second = repository_for_path(str(tmp_path) + "/.")

    assert first.id == second.id
    assert first.id.startswith("local-")
    assert first.name == tmp_path.name
    assert first.ref == str(tmp_path.resolve())
