"""Structured generation capability."""

from rp.llm.base import GenerationResult, StructuredGenerator, UnavailableGenerator

__all__ = ["GenerationResult", "StructuredGenerator", "UnavailableGenerator"]
