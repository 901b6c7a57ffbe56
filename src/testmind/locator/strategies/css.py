"""Locate elements with CSS selector variants of decreasing specificity."""

import re

from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext
from .base import TEST_ATTRIBUTES, Strategy, attr_selector

_CLASS_NAME = re.compile(r"^[a-zA-Z][\w-]*$")
_TAG_NAME = re.compile(r"^[a-zA-Z][\w-]*$")
_BRACKETS = re.compile(r"\[[^\]]*\]")

PRIORITY_ATTRIBUTES = ("type", "role", "aria-label", "placeholder", "title", "value", "href", "src")

DIRECT_BASE = 0.80
VARIANT_BASE = {
    "precise": 0.95,
    "partial": 0.80,
    "type_match": 0.75,
    "text_match": 0.70,
    "class_only": 0.65,
    "tag_only": 0.60,
}


def selector_complexity(selector: str) -> float:
    """Tag 1, each class 1, each attribute 1.5, each id 2."""
    bare = _BRACKETS.sub("", selector)
    score = 1.0 if re.match(r"^[a-zA-Z]", bare) else 0.0
    score += len(re.findall(r"\.[A-Za-z_-][\w-]*", bare))
    score += 1.5 * selector.count("[")
    score += 2 * len(re.findall(r"#[\w-]+", bare))
    return score


def adjust_confidence(base: float, selector: str, match_count: int) -> float:
    if match_count == 1:
        confidence = base + 0.10
    elif match_count <= 3:
        confidence = max(0.5, base - 0.10)
    else:
        confidence = max(0.3, base - 0.20)
    if selector_complexity(selector) > 2:
        confidence += 0.05
    if any(f"[{attr}" in selector for attr in ("data-test", "data-cy", "data-pw")):
        confidence += 0.05
    return min(1.0, confidence)


class CssSelectorStrategy(Strategy):
    """Try the descriptor's own selector, then variants built from attributes."""

    strategy = LocatorStrategy.CSS_SELECTOR

    def variants(self, descriptor: ElementDescriptor) -> list[tuple[str, str, float]]:
        """(name, selector, base confidence) in the order they are tried."""
        attrs = descriptor.attributes
        tag = (attrs.get("tagName") or attrs.get("tag") or "").lower()
        if not _TAG_NAME.match(tag):
            tag = ""
        raw_classes = attrs.get("class") or attrs.get("className") or ""
        classes = "".join(f".{c}" for c in raw_classes.split() if _CLASS_NAME.match(c))
        selectors = [
            attr_selector(name, attrs[name])
            for name in (*TEST_ATTRIBUTES, *PRIORITY_ATTRIBUTES)
            if attrs.get(name)
        ]
        attr_part = "".join(selectors)

        built: list[tuple[str, str, float]] = []
        if descriptor.css_selector:
            built.append(("direct", descriptor.css_selector.strip(), DIRECT_BASE))
        if tag and (classes or attr_part):
            built.append(("precise", tag + classes + attr_part, VARIANT_BASE["precise"]))
        if classes or attr_part:
            built.append(("partial", classes + attr_part, VARIANT_BASE["partial"]))
        if tag and selectors:
            built.append(("type_match", tag + selectors[0], VARIANT_BASE["type_match"]))
        if tag and descriptor.text_content:
            built.append(("text_match", tag, VARIANT_BASE["text_match"]))
        if classes:
            built.append(("class_only", classes, VARIANT_BASE["class_only"]))
        if tag:
            built.append(("tag_only", tag, VARIANT_BASE["tag_only"]))

        seen: set[str] = set()
        unique = []
        for name, selector, base in built:
            if selector and selector not in seen:
                seen.add(selector)
                unique.append((name, selector, base))
        return unique

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        if context is None:
            return None

        for name, selector, base in self.variants(descriptor):
            matches = await context.adapter.find_elements(selector)
            if not matches:
                continue
            confidence = adjust_confidence(base, selector, len(matches))
            if confidence >= self.min_confidence:
                return LocatorResult(
                    element=matches[0],
                    strategy=self.strategy,
                    confidence=confidence,
                    metadata={"selector": selector, "variant": name, "matches": len(matches)},
                )
        return None
