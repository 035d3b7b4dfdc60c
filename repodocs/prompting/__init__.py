"""Prompt construction for documentation generation."""

from .builder import GenerationRequest, ParsedDocument, PromptBuilder, summarize

__all__ = ["GenerationRequest", "ParsedDocument", "PromptBuilder", "summarize"]
