from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from vi.core.types import EXIT_INTENT, PAGE_VIEW


@dataclass(frozen=True, slots=True)
class CustomEvent:
    type: str
    timestamp: int  # ms since epoch, client clock
    payload: dict[str, Any] | None = None


@dataclass(slots=True)
class InteractionStats:
    clicks: int = 0
    hovers: int = 0
    inputs: int = 0
    last_seen: int = 0  # ms


@dataclass(frozen=True, slots=True)
class DeadClick:
    selector: str
    x: float
    y: float
    timestamp: int


@dataclass(slots=True)
class FormStats:
    focused_fields: list[str] = field(default_factory=list)
    inputs: int = 0
    submitted: bool = False


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    message: str
    source: str | None = None
    timestamp: int = 0


@dataclass(frozen=True, slots=True)
class MouseSample:
    x: float
    y: float
    t: int


@dataclass(slots=True)
class SignalBatch:
    """
    One flush window of behavioural observations.

    Scroll velocity and depth are high-water marks for the window. url and
    referrer describe where the window was observed; they are not signals.
    """

    dwell_time: dict[str, float] = field(default_factory=dict)
    scroll_velocity: float = 0.0
    scroll_depth: int = 0
    hesitation_event: bool = False
    rage_clicks: int = 0
    copy_text: list[str] = field(default_factory=list)
    text_selections: list[str] = field(default_factory=list)
    dead_clicks: list[DeadClick] = field(default_factory=list)
    events: list[CustomEvent] = field(default_factory=list)
    interactions: dict[str, InteractionStats] = field(default_factory=dict)
    forms: dict[str, FormStats] = field(default_factory=dict)
    performance: dict[str, float] = field(default_factory=dict)
    errors: list[ErrorRecord] = field(default_factory=list)
    mouse_trace: list[MouseSample] = field(default_factory=list)
    url: str | None = None
    referrer: str | None = None

    def is_empty(self) -> bool:
        return not (
            self.dwell_time
            or self.scroll_velocity > 0
            or self.scroll_depth > 0
            or self.hesitation_event
            or self.rage_clicks > 0
            or self.copy_text
            or self.text_selections
            or self.dead_clicks
            or self.events
            or self.interactions
            or self.forms
            or self.performance
            or self.errors
            or self.mouse_trace
        )

    def has_event(self, event_type: str) -> bool:
        return any(e.type == event_type for e in self.events)

    @property
    def exit_intent(self) -> bool:
        return self.has_event(EXIT_INTENT)

    def page_view_events(self) -> list[CustomEvent]:
        return [e for e in self.events if e.type == PAGE_VIEW]

    def total_dwell_seconds(self) -> float:
        return float(sum(self.dwell_time.values()))
