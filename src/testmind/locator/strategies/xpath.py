"""Locate elements with XPath expressions."""

from ...models import ElementDescriptor, LocatorResult, LocatorStrategy
from ..adapter import BrowserContext
from .base import TEST_ATTRIBUTES, Strategy

DIRECT_BASE = 0.70
SINGLE_ATTRIBUTES = ("type", "name", "role", "aria-label", "class")
MAX_FREE_DEPTH = 5


def xpath_literal(value: str) -> str:
    """Quote a string for XPath 1.0, which has no escape syntax."""
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    parts = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{part}"' for part in parts) + ")"


def is_absolute(xpath: str) -> bool:
    return xpath.startswith("/") and not xpath.startswith("//")


def path_depth(xpath: str) -> int:
    return len([segment for segment in xpath.split("/") if segment])


def is_valid_xpath(xpath: str) -> bool:
    """Cheap shape check: leading slash or paren, balanced brackets."""
    if not xpath.startswith(("/", "(")):
        return False
    for open_char, close_char in (("[", "]"), ("(", ")")):
        depth = 0
        for char in xpath:
            if char == open_char:
                depth += 1
            elif char == close_char:
                depth -= 1
                if depth < 0:
                    return False
        if depth:
            return False
    return True


def adjust_confidence(base: float, xpath: str, match_count: int) -> float:
    if match_count == 1:
        confidence = base + 0.10
    else:
        confidence = max(0.4, base - 0.15)
    if is_absolute(xpath):
        depth = path_depth(xpath)
        if depth > MAX_FREE_DEPTH:
            confidence = max(0.5, confidence - 0.02 * (depth - MAX_FREE_DEPTH))
    if "text()" in xpath or "contains(" in xpath:
        confidence += 0.05
    return min(1.0, confidence)


class XPathStrategy(Strategy):
    """Try the descriptor xpath, then text, id, test-attribute and tag paths."""

    strategy = LocatorStrategy.XPATH

    def variants(self, descriptor: ElementDescriptor) -> list[tuple[str, str, float]]:
        """(name, xpath, base confidence) in the order they are tried."""
        attrs = descriptor.attributes
        tag = (attrs.get("tagName") or attrs.get("tag") or "").lower() or "*"
        built: list[tuple[str, str, float]] = []

        if descriptor.xpath and is_valid_xpath(descriptor.xpath.strip()):
            built.append(("direct", descriptor.xpath.strip(), DIRECT_BASE))

        text = (descriptor.text_content or "").strip()
        if text:
            literal = xpath_literal(text)
            built.append(("text_exact", f"//{tag}[text()={literal}]", 0.90))
            built.append(("text_contains", f"//{tag}[contains(text(), {literal})]", 0.85))

        element_id = descriptor.id or attrs.get("id")
        if element_id:
            built.append(("id", f"//*[@id={xpath_literal(element_id)}]", 0.90))

        for name in TEST_ATTRIBUTES:
            if attrs.get(name):
                built.append(("test_attribute", f"//*[@{name}={xpath_literal(attrs[name])}]", 0.95))

        present = [name for name in SINGLE_ATTRIBUTES if attrs.get(name)]
        for name in present:
            built.append(("attribute", f"//{tag}[@{name}={xpath_literal(attrs[name])}]", 0.80))
        if len(present) >= 2:
            first, second = present[:2]
            built.append((
                "attribute_pair",
                f"//{tag}[@{first}={xpath_literal(attrs[first])} and "
                f"@{second}={xpath_literal(attrs[second])}]",
                0.85,
            ))

        if tag != "*":
            built.append(("tag_only", f"//{tag}", 0.60))
        return built

    async def locate(
        self,
        descriptor: ElementDescriptor,
        context: BrowserContext | None = None,
    ) -> LocatorResult | None:
        if context is None:
            return None

        for name, xpath, base in self.variants(descriptor):
            matches = await context.adapter.find_elements(xpath)
            if not matches:
                continue
            confidence = adjust_confidence(base, xpath, len(matches))
            if confidence >= self.min_confidence:
                return LocatorResult(
                    element=matches[0],
                    strategy=self.strategy,
                    confidence=confidence,
                    metadata={
                        "xpath": xpath,
                        "variant": name,
                        "path_type": "absolute" if is_absolute(xpath) else "relative",
                        "matches": len(matches),
                    },
                )
        return None
