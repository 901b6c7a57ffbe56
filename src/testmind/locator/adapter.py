"""Browser adapter boundary used by the locator strategies."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class BrowserAdapter(ABC):
    """Abstract base class for browser/DOM adapters.

    Handles returned by ``find_element`` are opaque to the locator engine.
    """

    @abstractmethod
    async def find_element(self, selector: str) -> Any | None:
        """
        Find the first element matching a CSS or XPath selector.

        Returns:
            An element handle, or None when nothing matches
        """
        pass

    @abstractmethod
    async def find_elements(self, selector: str) -> list[Any]:
        """Find all elements matching a selector."""
        pass

    async def is_unique(self, selector: str) -> bool:
        """True when exactly one element matches."""
        return len(await self.find_elements(selector)) == 1

    @abstractmethod
    async def get_simplified_dom(self, max_depth: int = 5) -> str:
        """
        Render a compact outline of the page for prompting.

        Returns:
            Indented text, one element per line
        """
        pass


@dataclass
class BrowserContext:
    """Everything a strategy may consult while locating an element."""

    adapter: BrowserAdapter
    url: str | None = None
    viewport: dict[str, int] | None = None
    elements: list[dict[str, Any]] = field(default_factory=list)  # visual candidates
    config: dict[str, Any] = field(default_factory=dict)
