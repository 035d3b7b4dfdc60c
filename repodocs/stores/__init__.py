"""Persistence backends for repodocs."""

from .base import Store
from .context_cache import ContextCache
from .local import LocalStore

__all__ = ["ContextCache", "LocalStore", "Store"]
