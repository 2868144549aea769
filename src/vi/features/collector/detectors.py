from __future__ import annotations

from dataclasses import dataclass, field

from .types import INTERACTIVE_ROLES, INTERACTIVE_TAGS, Element


def selector_for(element: Element) -> str:
    """#id when the element has one, else tag.class1.class2."""
    if element.id:
        return f"#{element.id}"
    return element.tag + "".join(f".{c}" for c in element.classes if c)


def _interactive_self(element: Element) -> bool:
    return (
        element.tag in INTERACTIVE_TAGS
        or element.has_click_handler
        or (element.cursor or "").lower() == "pointer"
        or (element.role or "").lower() in INTERACTIVE_ROLES
    )


def is_interactive(element: Element) -> bool:
    node: Element | None = element
    while node is not None:
        if _interactive_self(node):
            return True
        node = node.parent
    return False


@dataclass(slots=True)
class _Burst:
    count: int
    first_click: float


@dataclass(slots=True)
class RageClickDetector:
    """
    Per-selector click bursts. A burst opens on a click and lasts window_s; the
    click that brings it to threshold counts as one rage click. Later clicks in
    the same burst do not count again.
    """

    window_s: float = 1.0
    threshold: int = 4
    _bursts: dict[str, _Burst] = field(default_factory=dict, repr=False)

    def record(self, selector: str, now: float) -> bool:
        burst = self._bursts.get(selector)
        if burst is None or now - burst.first_click >= self.window_s:
            self._bursts[selector] = _Burst(count=1, first_click=now)
            return self.threshold <= 1

        burst.count += 1
        return burst.count == self.threshold


@dataclass(slots=True)
class ScrollSampler:
    """Velocity in px/s, sampled only when more than min_interval_s has passed."""

    min_interval_s: float = 0.1
    last_y: float = 0.0
    last_t: float = 0.0

    def reset(self, *, y: float, now: float) -> None:
        self.last_y = float(y)
        self.last_t = float(now)

    def sample(self, y: float, now: float) -> float | None:
        dt = now - self.last_t
        if dt <= self.min_interval_s:
            return None
        speed = abs(y - self.last_y) / dt
        self.last_y = float(y)
        self.last_t = float(now)
        return speed
