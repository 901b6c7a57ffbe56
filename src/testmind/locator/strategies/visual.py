"""Locate elements by comparing visual feature vectors.

Works on numbers and colors supplied by the adapter or the descriptor; no
screenshots or pixels are involved.
"""

import json
import math
import re
from dataclasses import asdict, dataclass
from typing import Any

from ...config import VisualConfig
from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext
from .base import Strategy

MAX_CONFIDENCE = 0.80
MAX_RGB_DISTANCE = 441.0  # 255 * sqrt(3)
POSITION_FALLOFF = 500.0

_HEX6 = re.compile(r"^#?([0-9a-f]{2})([0-9a-f]{2})([0-9a-f]{2})$", re.IGNORECASE)
_HEX3 = re.compile(r"^#([0-9a-f])([0-9a-f])([0-9a-f])$", re.IGNORECASE)
_RGB = re.compile(r"^rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)", re.IGNORECASE)


@dataclass
class VisualFeatures:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    background_color: str | None = None
    text_color: str | None = None
    text: str | None = None

    def signature(self) -> str:
        """JSON encoding usable as ``ElementDescriptor.visual_signature``."""
        return json.dumps(asdict(self))


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def features_from_mapping(data: dict[str, Any]) -> VisualFeatures:
    """Accept flat keys, ``_``-prefixed keys, or nested position/size objects."""
    position = data.get("position") or {}
    size = data.get("size") or {}

    def pick(*keys: str) -> Any:
        for key in keys:
            if data.get(key) not in (None, ""):
                return data[key]
        return None

    return VisualFeatures(
        x=_number(position.get("x", pick("_x", "x"))),
        y=_number(position.get("y", pick("_y", "y"))),
        width=_number(size.get("width", pick("_width", "width"))),
        height=_number(size.get("height", pick("_height", "height"))),
        background_color=pick("_backgroundColor", "backgroundColor", "background_color"),
        text_color=pick("_textColor", "textColor", "text_color"),
        text=pick("textContent", "text", "innerText"),
    )


def parse_color(color: str) -> tuple[int, int, int] | None:
    color = color.strip()
    if match := _HEX6.match(color):
        return tuple(int(g, 16) for g in match.groups())  # type: ignore[return-value]
    if match := _HEX3.match(color):
        return tuple(int(g * 2, 16) for g in match.groups())  # type: ignore[return-value]
    if match := _RGB.match(color):
        return tuple(min(255, int(g)) for g in match.groups())  # type: ignore[return-value]
    return None


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, 1):
        current = [i]
        for j, char_b in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b),
            ))
        previous = current
    return previous[-1]


class VisualStrategy(Strategy):
    """Score candidates from ``context.elements`` against target features."""

    strategy = LocatorStrategy.VISUAL

    def __init__(self, min_confidence: float = 0.7, config: VisualConfig | None = None):
        super().__init__(min_confidence)
        self.config = config or VisualConfig()

    def target_features(self, descriptor: ElementDescriptor) -> VisualFeatures | None:
        if descriptor.visual_signature:
            try:
                data = json.loads(descriptor.visual_signature)
            except (json.JSONDecodeError, TypeError):
                return None
            if not isinstance(data, dict):
                return None
            features = features_from_mapping(data)
        elif any(key.startswith("_") for key in descriptor.attributes):
            features = features_from_mapping(descriptor.attributes)
        else:
            return None
        if descriptor.text_content:
            features.text = descriptor.text_content
        return features

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        if context is None or not context.elements:
            return None
        target = self.target_features(descriptor)
        if target is None:
            return None

        best: dict[str, Any] | None = None
        best_features: VisualFeatures | None = None
        best_score = -1.0
        for candidate in context.elements:
            features = features_from_mapping(candidate)
            score = self.similarity(target, features)
            if score > best_score:
                best, best_features, best_score = candidate, features, score

        if best is None or best_score < self.min_confidence:
            return None
        return LocatorResult(
            element=best.get("element", best),
            strategy=self.strategy,
            confidence=min(MAX_CONFIDENCE, best_score),
            metadata={
                "similarity": best_score,
                "selector": best.get("selector"),
                "target_features": asdict(target),
                "matched_features": asdict(best_features) if best_features else None,
            },
        )

    def similarity(self, target: VisualFeatures, candidate: VisualFeatures) -> float:
        cfg = self.config
        return (
            self.position_similarity(target, candidate) * cfg.position_weight
            + self.size_similarity(target, candidate) * cfg.size_weight
            + self.color_similarity(target.background_color, candidate.background_color) * cfg.color_weight
            + self.text_similarity(target.text, candidate.text) * cfg.text_weight
        )

    def position_similarity(self, target: VisualFeatures, candidate: VisualFeatures) -> float:
        distance = math.hypot(target.x - candidate.x, target.y - candidate.y)
        if distance <= self.config.position_tolerance:
            return 1.0
        return max(0.0, 1 - distance / POSITION_FALLOFF)

    def size_similarity(self, target: VisualFeatures, candidate: VisualFeatures) -> float:
        if target.width == 0 or target.height == 0:
            return 0.0
        width_ratio = abs(target.width - candidate.width) / target.width
        height_ratio = abs(target.height - candidate.height) / target.height
        tolerance = self.config.size_tolerance
        if width_ratio <= tolerance and height_ratio <= tolerance:
            return 1.0
        return (max(0.0, 1 - width_ratio) + max(0.0, 1 - height_ratio)) / 2

    @staticmethod
    def color_similarity(first: str | None, second: str | None) -> float:
        if not first or not second:
            return 0.5
        if first.strip().lower() == second.strip().lower():
            return 1.0
        rgb1, rgb2 = parse_color(first), parse_color(second)
        if rgb1 is None or rgb2 is None:
            return 0.0
        distance = math.dist(rgb1, rgb2)
        return max(0.0, 1 - distance / MAX_RGB_DISTANCE)

    @staticmethod
    def text_similarity(first: str | None, second: str | None) -> float:
        if not first and not second:
            return 1.0
        if not first or not second:
            return 0.0
        if first == second:
            return 1.0
        longest = max(len(first), len(second))
        return max(0.0, 1 - levenshtein(first, second) / longest)
