"""Heuristic component extractors and the registry that routes artifacts to them."""

from __future__ import annotations

from .base import ComponentExtractor, make_component_id
from .python import PythonExtractor
from .registry import ExtractorRegistry, build_registry
from .typescript import TypeScriptExtractor

__all__ = [
    "ComponentExtractor",
    "ExtractorRegistry",
    "PythonExtractor",
    "TypeScriptExtractor",
    "build_registry",
    "make_component_id",
]
