"""Base class for locator strategies."""

from abc import ABC, abstractmethod

from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext

# Attributes test authors add purely for automation
TEST_ATTRIBUTES = ("data-testid", "data-test", "data-cy", "data-pw")


class Strategy(ABC):
    """One step of the locator waterfall.

    ``locate`` returns None for anything it cannot use, including a missing
    context. Adapter errors are left to the engine.
    """

    strategy: LocatorStrategy

    def __init__(self, min_confidence: float = 0.7):
        self.min_confidence = min_confidence

    @abstractmethod
    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        pass

    @property
    def name(self) -> str:
        return self.strategy.value


def quote_attr(value: str) -> str:
    """Quote a value for a CSS attribute selector."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


def attr_selector(name: str, value: str) -> str:
    return f"[{name}={quote_attr(value)}]"
