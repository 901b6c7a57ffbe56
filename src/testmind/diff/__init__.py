"""Diff generation and application."""

from .applier import DiffApplier
from .generator import DiffGenerator, format_unified, parse_unified, summarize

__all__ = ["DiffApplier", "DiffGenerator", "format_unified", "parse_unified", "summarize"]
