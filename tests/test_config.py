"""Tests for repodocs.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from repodocs.config import ConfigError, ContextConfig, LLMConfig, RepoDocsConfig, load_config


def test_load_config_returns_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path)

    assert isinstance(config, RepoDocsConfig)
    assert config.root == tmp_path.resolve()
    assert config.llm is None
    assert config.extraction.languages == []
    assert config.planning.strategy == "component-based"
    assert config.context == ContextConfig()
    assert config.generation.prune_outdated is True
    assert config.generation.model_hint is None
    assert config.store_path is None
    assert config.exclude_paths == []


def test_load_config_parses_expected_fields(tmp_path: Path) -> None:
    config_file = tmp_path / ".repodocs.yml"
    config_file.write_text(
        """
llm:
  runner: "ollama"
  model: "llama3:8b-instruct"
  temperature: 0.15
  max_tokens: 256
  base_url: "http://localhost:12434/engines/v1"
  request_timeout: 60
  input_cost_per_1k: 0.5
extraction:
  languages: [TypeScript, python]
planning:
  strategy: file-based
context:
  max_tokens: 4000
  max_documents: 10
  strategy: relevant
  include_overview: "no"
  cache_expiry_hours: 0
generation:
  prune_outdated: false
  model_hint: small-model
store:
  path: build/docs.json
exclude_paths:
  - "vendor/"
""",
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.llm == LLMConfig(
        runner="ollama",
        model="llama3:8b-instruct",
        temperature=0.15,
        max_tokens=256,
        base_url="http://localhost:12434/engines/v1",
        request_timeout=60.0,
        input_cost_per_1k=0.5,
    )
    assert config.extraction.languages == ["typescript", "python"]
    assert config.planning.strategy == "file-based"
    assert config.context == ContextConfig(
        max_tokens=4000,
        max_documents=10,
        strategy="relevant",
        include_overview=False,
        cache_expiry_hours=0.0,
    )
    assert config.generation.prune_outdated is False
    assert config.generation.model_hint == "small-model"
    assert config.store_path == tmp_path.resolve() / "build" / "docs.json"
    assert config.exclude_paths == ["vendor/"]


def test_load_config_accepts_the_file_path(tmp_path: Path) -> None:
    config_file = tmp_path / ".repodocs.yml"
    config_file.write_text("exclude_paths: dist/\n", encoding="utf-8")

    config = load_config(config_file)

    assert config.root == tmp_path.resolve()
    assert config.exclude_paths == ["dist/"]


def test_unknown_or_invalid_values_keep_defaults(tmp_path: Path) -> None:
    (tmp_path / ".repodocs.yml").write_text(
        """
planning:
  strategy: alphabetical
context:
  max_tokens: -5
  max_documents: lots
  strategy: random
  include_overview: maybe
""",
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.planning.strategy == "component-based"
    assert config.context == ContextConfig()


def test_empty_file_returns_defaults(tmp_path: Path) -> None:
    (tmp_path / ".repodocs.yml").write_text("\n", encoding="utf-8")

    assert load_config(tmp_path).llm is None


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    (tmp_path / ".repodocs.yml").write_text("llm: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Failed to parse .repodocs.yml"):
        load_config(tmp_path)


def test_non_mapping_root_raises_config_error(tmp_path: Path) -> None:
    (tmp_path / ".repodocs.yml").write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config(tmp_path)
