"""Locate elements by id and stable identifying attributes."""

import re

from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext
from .base import Strategy, attr_selector

_CSS_IDENT = re.compile(r"^[A-Za-z_][\w-]*$")

# Highest priority first
ATTRIBUTE_CONFIDENCE: list[tuple[str, float]] = [
    ("data-testid", 1.00),
    ("data-cy", 0.95),
    ("data-pw", 0.95),
    ("data-test", 0.95),
    ("id", 0.90),
    ("name", 0.85),
    ("aria-label", 0.80),
    ("aria-labelledby", 0.75),
]

UNIQUE_BONUS = 0.05
DUPLICATE_PENALTY = 0.15
DUPLICATE_FLOOR = 0.5


def id_selector(value: str) -> str:
    if _CSS_IDENT.match(value):
        return f"#{value}"
    return attr_selector("id", value)


class IdStrategy(Strategy):
    """Try the descriptor id, then identifying attributes in priority order."""

    strategy = LocatorStrategy.ID

    def candidates(self, descriptor: ElementDescriptor) -> list[tuple[str, str, float]]:
        """(selector, attribute, base confidence) in the order they are tried."""
        found = []
        if descriptor.id:
            found.append((id_selector(descriptor.id), "id", 0.90))
        for attribute, base in ATTRIBUTE_CONFIDENCE:
            value = descriptor.attributes.get(attribute)
            if not value:
                continue
            if attribute == "id":
                selector = id_selector(value)
            else:
                selector = attr_selector(attribute, value)
            if all(selector != existing for existing, _, _ in found):
                found.append((selector, attribute, base))
        return found

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        if context is None:
            return None

        for selector, attribute, base in self.candidates(descriptor):
            element = await context.adapter.find_element(selector)
            if element is None:
                continue
            unique = await context.adapter.is_unique(selector)
            if unique:
                confidence = min(1.0, base + UNIQUE_BONUS)
            else:
                confidence = max(DUPLICATE_FLOOR, base - DUPLICATE_PENALTY)
            if confidence >= self.min_confidence:
                return LocatorResult(
                    element=element,
                    strategy=self.strategy,
                    confidence=confidence,
                    metadata={"selector": selector, "attribute": attribute, "unique": unique},
                )
        return None
