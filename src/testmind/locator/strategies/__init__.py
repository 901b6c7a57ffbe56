"""Locator strategies, in default waterfall order."""

from .base import Strategy
from .css import CssSelectorStrategy
from .id_strategy import IdStrategy
from .semantic import SemanticStrategy
from .visual import VisualStrategy
from .xpath import XPathStrategy

__all__ = [
    "CssSelectorStrategy",
    "IdStrategy",
    "SemanticStrategy",
    "Strategy",
    "VisualStrategy",
    "XPathStrategy",
]
