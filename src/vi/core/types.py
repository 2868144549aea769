from __future__ import annotations

from enum import Enum


class IntentCategory(str, Enum):
    BOUNCER = "Bouncer"
    RESEARCHER = "Researcher"
    LEAD = "Lead"


class UiMode(str, Enum):
    PREGENERATED = "pregenerated"
    ON_DEMAND = "on_demand"

    @classmethod
    def parse(cls, value: str | None) -> UiMode:
        v = (value or "").strip().lower().replace("-", "_")
        for mode in cls:
            if mode.value == v:
                return mode
        raise ValueError(f"Unsupported ui mode: {value!r}")


# Standard event types the engine reacts to. Other custom event types pass through.
PAGE_VIEW = "page_view"
EXIT_INTENT = "exit_intent"
SESSION_END = "session_end"
CLICK = "click"
