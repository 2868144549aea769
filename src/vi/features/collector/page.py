from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

_COMPOUND_RE = re.compile(r"^(?P<tag>[a-zA-Z][\w-]*|\*)?(?P<rest>(?:[#.][\w-]+|\[[\w-]+\])*)$")
_PART_RE = re.compile(r"([#.])([\w-]+)|\[([\w-]+)\]")


def _matches_compound(el: PageElement, compound: str) -> bool:
    m = _COMPOUND_RE.match(compound)
    if m is None:
        raise ValueError(f"Unsupported selector: {compound!r}")

    tag = m.group("tag")
    if tag and tag != "*" and tag.lower() != el.tag:
        return False

    for sigil, name, attr in _PART_RE.findall(m.group("rest")):
        if sigil == "#" and el.id != name:
            return False
        if sigil == "." and name not in el.classes:
            return False
        if attr and not el.has_attribute(attr):
            return False
    return True


def _parse_complex(selector: str) -> tuple[list[str], list[str]]:
    compounds: list[str] = []
    combinators: list[str] = []
    expect_compound = True
    for token in re.sub(r"\s*>\s*", " > ", selector).split():
        if token == ">":
            if expect_compound:
                raise ValueError(f"Unsupported selector: {selector!r}")
            combinators.append(">")
            expect_compound = True
            continue
        if _COMPOUND_RE.match(token) is None:
            raise ValueError(f"Unsupported selector: {selector!r}")
        if not expect_compound:
            combinators.append(" ")
        compounds.append(token)
        expect_compound = False
    if expect_compound:
        raise ValueError(f"Unsupported selector: {selector!r}")
    return compounds, combinators


def _matches_from(el: PageElement, compounds: list[str], combinators: list[str], i: int) -> bool:
    if not _matches_compound(el, compounds[i]):
        return False
    if i == 0:
        return True
    if combinators[i - 1] == ">":
        return el.parent is not None and _matches_from(el.parent, compounds, combinators, i - 1)
    node = el.parent
    while node is not None:
        if _matches_from(node, compounds, combinators, i - 1):
            return True
        node = node.parent
    return False


def selector_matches(el: PageElement, selector: str) -> bool:
    """
    Comma lists of compound selectors (tag, #id, .class, [attr]) joined by
    descendant or child (`>`) combinators. Anything else raises ValueError.
    """
    for part in selector.split(","):
        if not part.strip():
            continue
        compounds, combinators = _parse_complex(part)
        if _matches_from(el, compounds, combinators, len(compounds) - 1):
            return True
    return False


@dataclass(eq=False)
class PageElement:
    """
    Minimal DOM node. Identity semantics: two elements are equal only if they
    are the same node.
    """

    tag: str
    id: str | None = None
    classes: tuple[str, ...] = ()
    role: str | None = None
    cursor: str | None = None
    has_click_handler: bool = False
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""

    parent: PageElement | None = field(default=None, repr=False)
    children: list[PageElement] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self.tag = self.tag.lower()

    def add(self, *children: PageElement) -> PageElement:
        for child in children:
            child.parent = self
            self.children.append(child)
        return self

    def remove(self) -> None:
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None

    def has_attribute(self, name: str) -> bool:
        if name == "id":
            return bool(self.id)
        if name == "class":
            return bool(self.classes)
        return name in self.attributes

    def matches(self, selector: str) -> bool:
        return selector_matches(self, selector)

    def closest(self, selector: str) -> PageElement | None:
        node: PageElement | None = self
        while node is not None:
            if node.matches(selector):
                return node
            node = node.parent
        return None

    def descendants(self) -> list[PageElement]:
        out: list[PageElement] = []
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            out.append(node)
            stack.extend(reversed(node.children))
        return out


class SimulatedPage:
    """
    In-memory document for driving a collector without a browser.

    Geometry is a single scroll axis: depth is the share of the page that has
    been inside the viewport.
    """

    def __init__(
        self,
        *,
        url: str,
        body: PageElement | None = None,
        referrer: str | None = None,
        user_agent: str | None = None,
        time_origin_ms: int = 0,
        page_height: float = 4000.0,
        viewport_height: float = 800.0,
    ) -> None:
        self.url = url
        self.hostname = urlsplit(url).hostname or ""
        self.referrer = referrer
        self.user_agent = user_agent
        self.time_origin_ms = int(time_origin_ms)
        self.page_height = float(page_height)
        self.viewport_height = float(viewport_height)
        self.visible = True
        self._body = body or PageElement("body")
        self.mounts: dict[str, tuple[PageElement, Any]] = {}

    @property
    def body(self) -> PageElement:
        return self._body

    def _all(self) -> list[PageElement]:
        return [self._body, *self._body.descendants()]

    def query(self, selector: str) -> PageElement | None:
        for el in self._all():
            if el.matches(selector):
                return el
        return None

    def query_all(self, selector: str) -> list[PageElement]:
        return [el for el in self._all() if el.matches(selector)]

    def scroll_depth(self, scroll_y: float) -> int:
        if self.page_height <= 0:
            return 100
        pct = (max(0.0, scroll_y) + self.viewport_height) / self.page_height * 100.0
        return int(min(100.0, max(0.0, round(pct))))

    def append(self, parent: PageElement, child: Any) -> None:
        """
        Attach a node. Non-element children (isolated mounts) get a host
        element carrying their host_id so the document can find them.
        """
        if isinstance(child, PageElement):
            parent.add(child)
            return
        host = PageElement("div", id=child.host_id)
        parent.add(host)
        self.mounts[child.host_id] = (host, child)

    def detach(self, host_id: str) -> None:
        entry = self.mounts.pop(host_id, None)
        if entry is not None:
            entry[0].remove()
