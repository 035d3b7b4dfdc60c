"""Explicit language-to-extractor registry with plugin discovery."""

from __future__ import annotations

from importlib import metadata
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from ..logging import get_logger
from ..models import Artifact, Component
from .base import ComponentExtractor
from .python import PythonExtractor
from .typescript import TypeScriptExtractor

_ENTRY_POINT_GROUP = "repodocs.extractors"

_BUILTIN_FACTORIES: dict[str, Callable[[], ComponentExtractor]] = {
    "typescript": TypeScriptExtractor,
    "python": PythonExtractor,
}


class ExtractorRegistry:
    """Maps lower-case language tags to component extractors.

    Built once per pipeline and handed to the orchestrator, so registration
    order is explicit rather than an import-time side effect.
    """

    def __init__(self) -> None:
        self._extractors: Dict[str, ComponentExtractor] = {}
        self.logger = get_logger("extractors.registry")

    def register(
        self, extractor: ComponentExtractor, languages: Iterable[str] | None = None
    ) -> None:
        for language in languages if languages is not None else extractor.languages:
            self._extractors[language.lower()] = extractor

    def get(self, language: str | None) -> Optional[ComponentExtractor]:
        if not language:
            return None
        return self._extractors.get(language.lower())

    def supports(self, language: str | None) -> bool:
        return self.get(language) is not None

    @property
    def languages(self) -> List[str]:
        return sorted(self._extractors)

    def extract_components(self, artifact: Artifact) -> List[Component]:
        """Route ``artifact`` to its language extractor; unsupported languages yield ``[]``."""
        extractor = self.get(artifact.language)
        if extractor is None:
            return []
        return extractor.extract_components(artifact)


def build_registry(languages: Sequence[str] | None = None) -> ExtractorRegistry:
    """Return a registry with built-in and plugin extractors, optionally restricted to ``languages``."""

    wanted: Set[str] | None = None
    if languages:
        wanted = {language.lower() for language in languages}

    registry = ExtractorRegistry()
    seen: Set[str] = set()

    def _add(name: str, factory: Callable[[], ComponentExtractor]) -> None:
        key = name.lower()
        if key in seen:
            return
        instance = factory()
        if not isinstance(instance, ComponentExtractor):
            raise TypeError(f"Extractor factory for '{name}' did not return a ComponentExtractor")
        seen.add(key)
        selected = [
            language for language in instance.languages if wanted is None or language.lower() in wanted
        ]
        if selected:
            registry.register(instance, selected)

    for name, factory in _BUILTIN_FACTORIES.items():
        _add(name, factory)

    for entry in _iter_entry_points():
        name = entry.name
        try:
            loaded = entry.load()
        except Exception as exc:
            raise RuntimeError(f"Failed to load extractor entry point '{name}': {exc}") from exc

        def _factory(obj: object = loaded) -> ComponentExtractor:
            return _coerce_extractor(obj)

        _add(name, _factory)

    if wanted:
        missing = wanted - set(registry.languages)
        if missing:
            raise ValueError(f"No extractor registered for languages: {', '.join(sorted(missing))}")

    return registry


def _coerce_extractor(obj: object) -> ComponentExtractor:
    if isinstance(obj, ComponentExtractor):
        return obj
    if isinstance(obj, type) and issubclass(obj, ComponentExtractor):
        return obj()
    if callable(obj):
        instance = obj()
        if isinstance(instance, ComponentExtractor):
            return instance
    raise TypeError("Extractor entry point must be a ComponentExtractor subclass or factory")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = ["ExtractorRegistry", "build_registry"]
