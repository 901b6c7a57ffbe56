"""Element location across changing UIs."""

from .adapter import BrowserAdapter, BrowserContext
from .dom import DOMElement, HTMLSnapshotAdapter
from .engine import LocatorEngine, descriptor_from_result, descriptor_from_selector

__all__ = [
    "BrowserAdapter",
    "BrowserContext",
    "DOMElement",
    "HTMLSnapshotAdapter",
    "LocatorEngine",
    "descriptor_from_result",
    "descriptor_from_selector",
]
