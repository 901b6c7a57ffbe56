"""Locate elements from a natural-language intent using the LLM."""

import re
from dataclasses import dataclass, field

import structlog

from ...llm.base import LLMRequest, LLMService, extract_json
from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext
from .base import Strategy

logger = structlog.get_logger(__name__)

MAX_CONFIDENCE = 0.90
CONFIDENCE_SCALE = 0.95

SEMANTIC_PROMPT = """Given the user intent: "{intent}"

{page_context}

Generate the most appropriate selector(s) to locate the element.

Consider:
1. Accessibility (ARIA labels, roles, semantic HTML)
2. Semantic meaning (button text, labels, placeholders)
3. Stability (avoid fragile selectors like nth-child)
4. Best practices (prefer data-testid, role, label over class)

Provide {max_suggestions} selector suggestions in order of preference.

## Response Format
Respond with valid JSON only:
{{
    "selectors": [
        {{"type": "css" | "xpath" | "id", "value": "selector string", "confidence": 0.0-1.0, "reasoning": "why"}}
    ],
    "reasoning": "overall analysis"
}}

Examples:
Intent: "login button" -> button[type="submit"], //button[contains(text(), "Login")], [aria-label="Login"]
Intent: "username input" -> input[name="username"], #username
"""

_LIST_MARKER = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+")


@dataclass
class SelectorSuggestion:
    type: str  # css, xpath or id
    value: str
    confidence: float
    reasoning: str = ""


@dataclass
class SemanticAnalysis:
    selectors: list[SelectorSuggestion] = field(default_factory=list)
    reasoning: str = ""
    confidence: float = 0.0


class SemanticStrategy(Strategy):
    """Ask the model for selectors matching ``semantic_intent`` and try them."""

    strategy = LocatorStrategy.SEMANTIC

    def __init__(
        self,
        llm: LLMService | None,
        min_confidence: float = 0.7,
        temperature: float = 0.3,
        max_suggestions: int = 3,
    ):
        super().__init__(min_confidence)
        self.llm = llm
        self.temperature = temperature
        self.max_suggestions = max_suggestions

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        intent = (descriptor.semantic_intent or "").strip()
        if not intent or self.llm is None or context is None:
            return None

        analysis = await self.analyze_intent(intent, context)
        if analysis is None or analysis.confidence < self.min_confidence:
            return None

        for suggestion in analysis.selectors:
            selector = f"#{suggestion.value}" if suggestion.type == "id" else suggestion.value
            try:
                element = await context.adapter.find_element(selector)
            except Exception as e:
                logger.debug("semantic_selector_failed", selector=selector, error=str(e))
                continue
            if element is not None:
                return LocatorResult(
                    element=element,
                    strategy=self.strategy,
                    confidence=min(MAX_CONFIDENCE, suggestion.confidence * CONFIDENCE_SCALE),
                    metadata={
                        "intent": intent,
                        "selector": selector,
                        "selector_type": suggestion.type,
                        "reasoning": suggestion.reasoning,
                        "llm_analysis": analysis.reasoning,
                    },
                )
        return None

    async def analyze_intent(self, intent: str, context: BrowserContext) -> SemanticAnalysis | None:
        try:
            dom = await context.adapter.get_simplified_dom(5)
            page_context = f"Page context:\n{dom}"
        except Exception:
            page_context = "No specific page context available."

        prompt = SEMANTIC_PROMPT.format(
            intent=intent,
            page_context=page_context,
            max_suggestions=self.max_suggestions,
        )
        try:
            response = await self.llm.generate(LLMRequest(
                prompt=prompt,
                temperature=self.temperature,
                max_tokens=500,
            ))
        except Exception as e:
            logger.warning("semantic_analysis_failed", intent=intent, error=str(e))
            return None
        return self.parse_response(response.content)

    def parse_response(self, content: str) -> SemanticAnalysis | None:
        data = extract_json(content)
        if data is None:
            return self.parse_simple_response(content)

        raw = data.get("selectors")
        if not isinstance(raw, list) or not raw:
            return None
        selectors = []
        for item in raw:
            if not isinstance(item, dict) or not item.get("value"):
                continue
            try:
                confidence = float(item.get("confidence", 0.7))
            except (TypeError, ValueError):
                confidence = 0.7
            selectors.append(SelectorSuggestion(
                type=str(item.get("type", "css")).lower(),
                value=str(item["value"]).strip(),
                confidence=confidence,
                reasoning=str(item.get("reasoning", "")),
            ))
        if not selectors:
            return None

        return SemanticAnalysis(
            selectors=selectors[:self.max_suggestions],
            reasoning=str(data.get("reasoning") or "LLM analysis"),
            confidence=sum(s.confidence for s in selectors) / len(selectors),
        )

    def parse_simple_response(self, content: str) -> SemanticAnalysis | None:
        """Pull selectors out of plain text, one per line."""
        selectors = []
        for line in content.splitlines():
            value = _LIST_MARKER.sub("", line).strip().strip("`")
            if not value:
                continue
            if value.startswith("/"):
                selectors.append(SelectorSuggestion("xpath", value, 0.70, "Extracted from LLM response"))
            elif any(char in value for char in "[#."):
                selectors.append(SelectorSuggestion("css", value, 0.75, "Extracted from LLM response"))
        if not selectors:
            return None
        return SemanticAnalysis(
            selectors=selectors[:self.max_suggestions],
            reasoning="Parsed from simple response",
            confidence=0.70,
        )
