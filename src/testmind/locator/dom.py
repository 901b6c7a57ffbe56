"""Browser adapter over a static HTML snapshot."""

from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup, Tag
from lxml import etree
from soupsieve import SelectorSyntaxError

from .adapter import BrowserAdapter, BrowserContext

# Attributes worth showing in a simplified DOM outline
OUTLINE_ATTRIBUTES = (
    "data-testid", "data-test", "data-cy", "data-pw", "name", "type",
    "role", "aria-label", "placeholder", "href",
)


@dataclass(eq=False)
class DOMElement:
    """An element of the snapshot. Identity is its absolute path."""

    tag: str
    path: str
    id: str | None = None
    classes: list[str] = field(default_factory=list)
    text: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DOMElement) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    @property
    def data_testid(self) -> str | None:
        """Get data-testid attribute if present."""
        return self.attributes.get("data-testid")

    @property
    def css_selector(self) -> str:
        """A short CSS selector for the element."""
        if self.id:
            return f"#{self.id}"
        if self.data_testid:
            return f'[data-testid="{self.data_testid}"]'
        if self.classes:
            return f"{self.tag}.{'.'.join(self.classes[:2])}"  # Limit to 2 classes
        return self.tag


def _squash(text: str) -> str | None:
    return " ".join(text.split()) or None


def _bs4_path(tag: Tag) -> str:
    """Absolute path in the same form lxml's ``getpath`` produces."""
    parts = []
    current: Tag | None = tag
    while isinstance(current, Tag) and current.name != "[document]":
        parent = current.parent
        if isinstance(parent, Tag):
            same = parent.find_all(current.name, recursive=False)
        else:
            same = [current]
        if len(same) > 1:
            index = next(k for k, s in enumerate(same) if s is current) + 1
            parts.insert(0, f"{current.name}[{index}]")
        else:
            parts.insert(0, current.name)
        current = parent
    return "/" + "/".join(parts)


class HTMLSnapshotAdapter(BrowserAdapter):
    """Answer selector queries against parsed HTML.

    CSS selectors go through BeautifulSoup; selectors starting with ``/``
    or ``(`` are evaluated as XPath by lxml. Invalid selectors match nothing.
    """

    def __init__(self, html: str):
        self.html = html
        self.soup = BeautifulSoup(html, "lxml")
        self._tree = etree.HTML(html) if html.strip() else None

    @classmethod
    def from_file(cls, path: Path | str) -> "HTMLSnapshotAdapter":
        return cls(Path(path).read_text(encoding="utf-8"))

    @staticmethod
    def is_xpath(selector: str) -> bool:
        return selector.startswith(("/", "("))

    async def find_element(self, selector: str) -> DOMElement | None:
        elements = self.query(selector)
        return elements[0] if elements else None

    async def find_elements(self, selector: str) -> list[DOMElement]:
        return self.query(selector)

    def query(self, selector: str) -> list[DOMElement]:
        """Synchronous selector lookup."""
        selector = selector.strip()
        if not selector:
            return []
        if self.is_xpath(selector):
            return self._find_by_xpath(selector)
        return self._find_by_css(selector)

    def _find_by_css(self, css_selector: str) -> list[DOMElement]:
        try:
            tags = self.soup.select(css_selector)
        except SelectorSyntaxError:
            return []
        return [self._tag_to_element(t) for t in tags if isinstance(t, Tag)]

    def _find_by_xpath(self, xpath: str) -> list[DOMElement]:
        if self._tree is None:
            return []
        try:
            found = self._tree.xpath(xpath)
        except etree.XPathError:
            return []
        if not isinstance(found, list):
            return []
        return [
            self._lxml_to_element(el) for el in found
            if isinstance(el, etree._Element) and isinstance(el.tag, str)
        ]

    def _tag_to_element(self, tag: Tag) -> DOMElement:
        classes = tag.get("class", [])
        if isinstance(classes, str):
            classes = classes.split()
        return DOMElement(
            tag=tag.name,
            path=_bs4_path(tag),
            id=tag.get("id"),
            classes=list(classes),
            text=_squash(tag.get_text(" ")),
            attributes={
                k: " ".join(v) if isinstance(v, list) else str(v)
                for k, v in tag.attrs.items() if k not in ("id", "class")
            },
        )

    def _lxml_to_element(self, el: etree._Element) -> DOMElement:
        return DOMElement(
            tag=el.tag,
            path=el.getroottree().getpath(el),
            id=el.get("id"),
            classes=(el.get("class") or "").split(),
            text=_squash(" ".join(el.itertext())),
            attributes={k: v for k, v in el.attrib.items() if k not in ("id", "class")},
        )

    async def get_simplified_dom(self, max_depth: int = 5) -> str:
        root = self.soup.body or self.soup
        lines: list[str] = []
        for child in root.children:
            if isinstance(child, Tag):
                self._outline(child, 0, max_depth, lines)
        return "\n".join(lines)

    def _outline(self, tag: Tag, depth: int, max_depth: int, lines: list[str]) -> None:
        if depth >= max_depth or tag.name in ("script", "style", "noscript"):
            return
        parts = [tag.name]
        if tag.get("id"):
            parts.append(f'id="{tag.get("id")}"')
        if tag.get("class"):
            parts.append(f'class="{" ".join(tag.get("class"))}"')
        for attr in OUTLINE_ATTRIBUTES:
            if tag.get(attr):
                parts.append(f'{attr}="{tag.get(attr)}"')
        line = "  " * depth + "<" + " ".join(parts) + ">"
        if tag.string and tag.string.strip():
            line += " " + tag.string.strip()[:60]
        lines.append(line)
        for child in tag.children:
            if isinstance(child, Tag):
                self._outline(child, depth + 1, max_depth, lines)

    def visual_candidates(self) -> list[dict]:
        """Feature dicts for elements carrying ``data-x``/``data-y`` geometry."""
        candidates = []
        for tag in self.soup.find_all(attrs={"data-x": True}):
            try:
                features = {
                    "x": float(tag["data-x"]),
                    "y": float(tag.get("data-y", 0)),
                    "width": float(tag.get("data-width", 0)),
                    "height": float(tag.get("data-height", 0)),
                }
            except ValueError:
                continue
            element = self._tag_to_element(tag)
            features.update(
                backgroundColor=tag.get("data-bg"),
                textColor=tag.get("data-color"),
                text=element.text,
                selector=element.css_selector,
                element=element,
            )
            candidates.append(features)
        return candidates

    def context(self, url: str | None = None) -> BrowserContext:
        """Build a BrowserContext over this snapshot."""
        return BrowserContext(adapter=self, url=url, elements=self.visual_candidates())
