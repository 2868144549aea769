from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from bs4 import BeautifulSoup

from vi.features.synthesis.markup import ensure_single_close
from vi.features.synthesis.types import CLOSE_CLASS, AdaptivePayload

HOST_ID = "vi-ai-host"

HOST_STYLE = "position: relative; z-index: 2147483647;"
PINNED_STYLE = (
    "position: fixed; bottom: 20px; right: 20px; width: auto; max-width: 400px; "
    "z-index: 2147483647;"
)

BASE_CSS = f"""
:host {{ all: initial; display: block; }}
* {{ box-sizing: border-box; }}
.{CLOSE_CLASS} {{
  position: absolute; top: 10px; right: 10px; width: 24px; height: 24px;
  background: rgba(0,0,0,0.3); color: white; border-radius: 50%;
  display: flex; align-items: center; justify-content: center;
  cursor: pointer; font-size: 16px; line-height: 1; border: none; z-index: 100;
}}
.{CLOSE_CLASS}:hover {{ background: rgba(0,0,0,0.6); }}
"""

ScriptRunner = Callable[[str], object]


def is_generic_target(selector: str | None) -> bool:
    return (selector or "").strip().lower() in ("", "body")


@dataclass
class IsolatedMount:
    """
    An injected payload in its own style scope.

    The script is held apart from the markup and only runs through
    run_script, inside an error boundary.
    """

    target_selector: str
    pinned: bool
    html: str
    stylesheet: str
    script: str
    host_id: str = HOST_ID
    dismissed: bool = False
    script_error: str | None = None

    @property
    def host_style(self) -> str:
        return PINNED_STYLE if self.pinned else HOST_STYLE

    def close_controls(self) -> int:
        return len(BeautifulSoup(self.html, "html.parser").select(f".{CLOSE_CLASS}"))

    def is_close_action(self, selector: str) -> bool:
        """
        True when a click on `selector` lands on or inside the single dismiss
        control. Other close-looking markup in the payload does not dismiss.
        """
        node = BeautifulSoup(self.html, "html.parser").select_one(selector)
        while node is not None and node.name != "[document]":
            classes = node.get("class") or []
            if CLOSE_CLASS in classes:
                return True
            node = node.parent
        return False

    def run_script(self, runner: ScriptRunner | None, logger: logging.Logger) -> bool:
        if not self.script.strip() or runner is None:
            return False
        try:
            runner(self.script)
        except Exception as e:
            self.script_error = repr(e)
            logger.warning(
                "injected script failed",
                extra={"feature": "collector", "reason": "script_error", "error": repr(e)},
            )
            return False
        return True


def build_mount(payload: AdaptivePayload, *, target_found: bool) -> IsolatedMount:
    pinned = is_generic_target(payload.target_selector) or not target_found
    return IsolatedMount(
        target_selector=payload.target_selector,
        pinned=pinned,
        html=ensure_single_close(payload.html),
        stylesheet=f"{payload.css}\n{BASE_CSS}",
        script=payload.js or "",
    )
