from __future__ import annotations

from .types import DWELL_CANDIDATE_SELECTOR, Element


class DwellTracker:
    """
    Per-element visible time, excluding time the document is hidden.

    Element states: not visible, visible and counting (``active`` holds the
    start time), or visible while the tab is hidden (``paused``). Committed
    seconds accumulate until the next checkpoint drains them.
    """

    def __init__(self, *, threshold: float = 0.1) -> None:
        self.threshold = float(threshold)
        self.observed: set[str] = set()
        self.active: dict[str, float] = {}
        self.paused: set[str] = set()
        self.accumulated: dict[str, float] = {}
        self.document_visible = True
        self.connected = True

    def observe(self, element: Element) -> bool:
        if not self.connected or not element.id:
            return False
        if not element.matches(DWELL_CANDIDATE_SELECTOR):
            return False
        self.observed.add(element.id)
        return True

    def _commit(self, element_id: str, now: float) -> None:
        start = self.active.pop(element_id)
        self.accumulated[element_id] = self.accumulated.get(element_id, 0.0) + max(0.0, now - start)

    def on_intersection(self, element_id: str, ratio: float, now: float) -> None:
        if not self.connected or element_id not in self.observed:
            return

        if ratio >= self.threshold and ratio > 0:
            if element_id in self.active:
                return
            if self.document_visible:
                self.active[element_id] = now
                self.paused.discard(element_id)
            else:
                self.paused.add(element_id)
            return

        if element_id in self.active:
            self._commit(element_id, now)
        self.paused.discard(element_id)

    def on_visibility(self, visible: bool, now: float) -> None:
        if not self.connected or visible == self.document_visible:
            self.document_visible = visible
            return
        self.document_visible = visible

        if not visible:
            for element_id in list(self.active):
                self._commit(element_id, now)
                self.paused.add(element_id)
            return

        for element_id in self.paused:
            self.active[element_id] = now
        self.paused.clear()

    def checkpoint(self, now: float) -> dict[str, float]:
        """Commit open timers (they keep counting from now) and drain totals, in 0.1 s."""
        for element_id in list(self.active):
            self._commit(element_id, now)
            self.active[element_id] = now

        out = {k: round(v, 1) for k, v in self.accumulated.items()}
        self.accumulated = {}
        return out

    def disconnect(self) -> None:
        self.connected = False
        self.observed.clear()
        self.active.clear()
        self.paused.clear()
