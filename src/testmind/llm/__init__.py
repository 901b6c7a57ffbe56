"""Language model collaborators."""

from .base import LLMRequest, LLMResponse, LLMService, extract_json

__all__ = ["LLMRequest", "LLMResponse", "LLMService", "extract_json"]
