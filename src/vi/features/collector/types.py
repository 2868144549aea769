from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any, Protocol


class CollectorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    STOPPED = "stopped"
    DISABLED = "disabled"
    TERMINATED = "terminated"


DWELL_CANDIDATE_SELECTOR = "section, article, div[id]"
CTA_SELECTOR = "button, a, .cta"

INTERACTIVE_TAGS = frozenset(
    {"a", "button", "input", "select", "textarea", "label", "summary", "details", "option"}
)
INTERACTIVE_ROLES = frozenset(
    {"button", "link", "checkbox", "radio", "menuitem", "tab", "switch", "option", "textbox"}
)

# Ignored as interaction targets.
ROOT_TAGS = frozenset({"body", "html"})


class Element(Protocol):
    tag: str
    id: str | None
    classes: tuple[str, ...]
    parent: Element | None
    children: list[Element]
    role: str | None
    cursor: str | None
    has_click_handler: bool

    def matches(self, selector: str) -> bool: ...

    def closest(self, selector: str) -> Element | None: ...

    def descendants(self) -> Sequence[Element]: ...


class HostPage(Protocol):
    """The slice of the browser document the collector talks to."""

    url: str
    hostname: str
    referrer: str | None
    user_agent: str | None
    time_origin_ms: int  # epoch ms at page clock zero
    visible: bool

    @property
    def body(self) -> Element: ...

    def query(self, selector: str) -> Element | None: ...

    def query_all(self, selector: str) -> list[Element]: ...

    def scroll_depth(self, scroll_y: float) -> int: ...

    def append(self, parent: Element, child: Any) -> None: ...

    def detach(self, host_id: str) -> None: ...


class Transport(Protocol):
    """Network seam: handshake fetch and fire-and-forget batch send."""

    def fetch_config(self, site_id: str) -> Mapping[str, Any]: ...

    def send(self, body: Mapping[str, Any]) -> Mapping[str, Any] | None: ...
