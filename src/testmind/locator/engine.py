"""Locator waterfall: try strategies in order until one is confident enough."""

import re

import structlog

from ..config import LocatorConfig
from ..llm.base import LLMService
from ..models import ElementDescriptor, LocatorResult, LocatorStrategy
from .adapter import BrowserContext
from .strategies import (
    CssSelectorStrategy,
    IdStrategy,
    SemanticStrategy,
    Strategy,
    VisualStrategy,
    XPathStrategy,
)
from .strategies.base import TEST_ATTRIBUTES, attr_selector

logger = structlog.get_logger(__name__)

_SIMPLE_ID = re.compile(r"^#([A-Za-z_][\w-]*)$")
_CLASS_CHAIN = re.compile(r"^([a-zA-Z][\w-]*)?((?:\.[A-Za-z_-][\w-]*)+)$")
_ATTRIBUTE_ONLY = re.compile(r"""^\[([\w-]+)\s*=\s*["']?(.*?)["']?\]$""")


class LocatorEngine:
    """Runs the strategy waterfall over a browser context."""

    def __init__(
        self,
        config: LocatorConfig | None = None,
        llm: LLMService | None = None,
        strategies: list[Strategy] | None = None,
    ):
        self.config = config or LocatorConfig()
        self.min_confidence = self.config.min_confidence
        self.strategies = strategies if strategies is not None else self._build_strategies(llm)

    def _build_strategies(self, llm: LLMService | None) -> list[Strategy]:
        cfg = self.config
        available: dict[str, Strategy] = {
            "id": IdStrategy(cfg.min_confidence),
            "css_selector": CssSelectorStrategy(cfg.min_confidence),
            "xpath": XPathStrategy(cfg.min_confidence),
        }
        if cfg.enable_visual:
            available["visual"] = VisualStrategy(cfg.min_confidence, cfg.visual)
        if cfg.enable_semantic and llm is not None:
            available["semantic"] = SemanticStrategy(llm, cfg.min_confidence)
        return [available[name] for name in cfg.strategies if name in available]

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        """Return the first result at or above ``min_confidence``."""
        for strategy in self.strategies:
            result = await self._run(strategy, descriptor, context)
            if result is not None and result.confidence >= self.min_confidence:
                logger.info(
                    "element_located",
                    strategy=result.strategy.value,
                    confidence=round(result.confidence, 3),
                )
                return result
        logger.info("element_not_located", strategies=[s.name for s in self.strategies])
        return None

    async def locate_all(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> list[LocatorResult]:
        """Run every strategy and collect all results, for diagnostics."""
        results = []
        for strategy in self.strategies:
            result = await self._run(strategy, descriptor, context)
            if result is not None:
                results.append(result)
        return results

    async def _run(
        self,
        strategy: Strategy,
        descriptor: ElementDescriptor,
        context: BrowserContext | None,
    ) -> LocatorResult | None:
        try:
            return await strategy.locate(descriptor, context)
        except Exception as e:
            logger.warning("strategy_failed", strategy=strategy.name, error=str(e))
            return None

    @staticmethod
    def suggest_alternative_locators(descriptor: ElementDescriptor) -> list[ElementDescriptor]:
        """Alternative descriptors built from whatever fields are populated."""
        suggestions = []
        if descriptor.id:
            suggestions.append(ElementDescriptor(id=descriptor.id, css_selector=f"#{descriptor.id}"))

        for name in TEST_ATTRIBUTES:
            value = descriptor.attributes.get(name)
            if value:
                suggestions.append(ElementDescriptor(
                    css_selector=attr_selector(name, value),
                    attributes={name: value},
                ))
                break

        classes = (descriptor.attributes.get("class") or "").split()
        if classes:
            suggestions.append(ElementDescriptor(css_selector=f".{classes[0]}"))

        if descriptor.text_content:
            suggestions.append(ElementDescriptor(
                xpath=f"//*[contains(text(), '{descriptor.text_content}')]",
                text_content=descriptor.text_content,
            ))
        return suggestions


def descriptor_from_selector(selector: str, text: str | None = None) -> ElementDescriptor:
    """Turn a raw failing selector into a sparse descriptor."""
    selector = selector.strip()
    descriptor = ElementDescriptor(text_content=text or None)

    if match := _SIMPLE_ID.match(selector):
        descriptor.id = match.group(1)
    elif selector.startswith(("/", "(")):
        descriptor.xpath = selector
    elif match := _ATTRIBUTE_ONLY.match(selector):
        descriptor.css_selector = selector
        if match.group(1) == "id":
            descriptor.id = match.group(2)
        else:
            descriptor.attributes[match.group(1)] = match.group(2)
    else:
        descriptor.css_selector = selector
        if match := _CLASS_CHAIN.match(selector):
            if match.group(1):
                descriptor.attributes["tag"] = match.group(1)
            descriptor.attributes["class"] = " ".join(c for c in match.group(2).split(".") if c)
    return descriptor


def descriptor_from_result(result: LocatorResult) -> ElementDescriptor:
    """Describe a relocated element so it can seed selector suggestions."""
    element = result.element
    element_id = getattr(element, "id", None)
    if isinstance(element_id, str) and element_id and _SIMPLE_ID.match(f"#{element_id}"):
        return ElementDescriptor(id=element_id, css_selector=f"#{element_id}")

    if result.strategy is LocatorStrategy.XPATH and result.metadata.get("xpath"):
        return ElementDescriptor(xpath=result.metadata["xpath"])

    selector = result.metadata.get("selector") or getattr(element, "css_selector", None)
    if isinstance(selector, str) and selector:
        if match := _SIMPLE_ID.match(selector):
            return ElementDescriptor(id=match.group(1), css_selector=selector)
        return ElementDescriptor(css_selector=selector)
    return ElementDescriptor()
