"""Configuration loading for repodocs (.repodocs.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = ".repodocs.yml"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class LLMConfig:
    """Completion adapter settings from .repodocs.yml."""

    runner: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: Optional[float] = None
    executable: Optional[str] = None
    input_cost_per_1k: float = 0.0
    output_cost_per_1k: float = 0.0


@dataclass
class ExtractionConfig:
    """Languages routed through the extractor registry."""

    languages: List[str] = field(default_factory=list)


@dataclass
class PlanningConfig:
    strategy: str = "component-based"


@dataclass
class ContextConfig:
    """Context window limits; max_tokens is advisory."""

    max_tokens: int = 8000
    max_documents: int = 50
    strategy: str = "mixed"
    include_overview: bool = True
    cache_expiry_hours: float = 24.0


@dataclass
class GenerationConfig:
    prune_outdated: bool = True
    model_hint: Optional[str] = None


@dataclass
class RepoDocsConfig:
    """Represents the high-level settings defined in .repodocs.yml."""

    root: Path
    llm: Optional[LLMConfig] = None
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    planning: PlanningConfig = field(default_factory=PlanningConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    store_path: Optional[Path] = None
    exclude_paths: List[str] = field(default_factory=list)


_CONTEXT_STRATEGIES = ("recent", "relevant", "mixed")
_PLANNING_STRATEGIES = ("component-based", "file-based")
_FLAGS = {"true": True, "yes": True, "1": True, "false": False, "no": False, "0": False}
_LLM_FIELDS: Dict[str, type] = {
    "runner": str,
    "model": str,
    "temperature": float,
    "max_tokens": int,
    "base_url": str,
    "api_key": str,
    "request_timeout": float,
    "executable": str,
}


def load_config(config_path: Path) -> RepoDocsConfig:
    """Load ``.repodocs.yml`` from a directory or file path.

    A missing file yields the defaults. Unknown keys and values of the wrong
    shape are ignored; only unreadable YAML raises :class:`ConfigError`.
    """
    config_file = _locate(config_path)
    root = config_file.parent.resolve()
    if not config_file.exists():
        return RepoDocsConfig(root=root)

    data = _parse(config_file)
    languages = _strings(_section(data, "extraction").get("languages"))
    store_path = _coerce(_section(data, "store").get("path"), str)
    return RepoDocsConfig(
        root=root,
        llm=_llm_config(_section(data, "llm")),
        extraction=ExtractionConfig(languages=[language.lower() for language in languages]),
        planning=PlanningConfig(
            strategy=_choice(_section(data, "planning").get("strategy"), _PLANNING_STRATEGIES)
            or PlanningConfig.strategy
        ),
        context=_context_config(_section(data, "context")),
        generation=_generation_config(_section(data, "generation")),
        store_path=root / store_path if store_path else None,
        exclude_paths=_strings(data.get("exclude_paths")),
    )


def _locate(config_path: Path) -> Path:
    path = Path(config_path).expanduser()
    if path.is_dir():
        path = path / CONFIG_FILENAME
    elif path.name != CONFIG_FILENAME:
        path = path.parent / CONFIG_FILENAME
    return path.resolve()


def _parse(config_file: Path) -> Dict[str, Any]:
    raw = config_file.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw) if raw.strip() else None
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {config_file.name}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")
    return data


def _llm_config(section: Dict[str, Any]) -> Optional[LLMConfig]:
    if not section:
        return None
    values = {name: _coerce(section.get(name), kind) for name, kind in _LLM_FIELDS.items()}
    return LLMConfig(
        **values,
        input_cost_per_1k=_coerce(section.get("input_cost_per_1k"), float) or 0.0,
        output_cost_per_1k=_coerce(section.get("output_cost_per_1k"), float) or 0.0,
    )


def _context_config(section: Dict[str, Any]) -> ContextConfig:
    context = ContextConfig()
    max_tokens = _coerce(section.get("max_tokens"), int)
    if max_tokens is not None and max_tokens > 0:
        context.max_tokens = max_tokens
    max_documents = _coerce(section.get("max_documents"), int)
    if max_documents is not None and max_documents >= 0:
        context.max_documents = max_documents
    context.strategy = _choice(section.get("strategy"), _CONTEXT_STRATEGIES) or context.strategy
    include_overview = _coerce(section.get("include_overview"), bool)
    if include_overview is not None:
        context.include_overview = include_overview
    expiry = _coerce(section.get("cache_expiry_hours"), float)
    if expiry is not None and expiry >= 0:
        context.cache_expiry_hours = expiry
    return context


def _generation_config(section: Dict[str, Any]) -> GenerationConfig:
    prune = _coerce(section.get("prune_outdated"), bool)
    return GenerationConfig(
        prune_outdated=True if prune is None else prune,
        model_hint=_coerce(section.get("model_hint"), str),
    )


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _coerce(value: Any, kind: type) -> Any:
    """Convert a scalar YAML value to ``kind``; anything unusable becomes ``None``."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if kind is str:
        return str(value).lower() if isinstance(value, bool) else str(value)
    if kind is bool:
        return value if isinstance(value, bool) else _FLAGS.get(str(value).strip().lower())
    if isinstance(value, bool):
        return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        return None


def _choice(value: Any, allowed: Sequence[str]) -> Optional[str]:
    text = _coerce(value, str)
    return text if text in allowed else None


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "CONFIG_FILENAME",
    "ConfigError",
    "ContextConfig",
    "ExtractionConfig",
    "GenerationConfig",
    "LLMConfig",
    "PlanningConfig",
    "RepoDocsConfig",
    "load_config",
]
