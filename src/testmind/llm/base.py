"""Language model collaborator boundary."""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class LLMRequest:
    """A single prompt sent to the model."""

    prompt: str
    temperature: float = 0.3
    max_tokens: int = 500


@dataclass
class LLMResponse:
    """Model output plus token usage, when the provider reports it."""

    content: str
    usage: dict[str, int] = field(default_factory=dict)


@runtime_checkable
class LLMService(Protocol):
    """Anything that can answer an ``LLMRequest``.

    Implementations may raise; every call site catches and falls back to
    rule-based behavior.
    """

    async def generate(self, request: LLMRequest) -> LLMResponse:
        ...


def extract_json(text: str) -> dict[str, Any] | None:
    """Extract the first JSON object from model output (may be wrapped in markdown)."""
    json_match = re.search(r'\{[\s\S]*\}', text or "")
    if not json_match:
        return None
    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
