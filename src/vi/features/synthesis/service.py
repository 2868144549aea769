from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from vi.core.logging import get_logger

from .markup import ensure_single_close
from .types import (
    CLOSE_CLASS,
    DEFAULT_TARGET,
    WIRE_FIELDS,
    AdaptivePayload,
    SynthesisError,
    SynthesisRequest,
    UiGenerator,
)

FALLBACK_HTML = (
    '<div id="vi-fallback" style="position:fixed;bottom:20px;right:20px;padding:20px;'
    "background:white;box-shadow:0 4px 12px rgba(0,0,0,0.1);border-radius:8px;\">"
    "How can we help you? "
    f'<button class="{CLOSE_CLASS}" type="button" style="margin-left:10px;">x</button>'
    "</div>"
)
FALLBACK_CSS = "#vi-fallback { z-index: 9999; font-family: sans-serif; }"

_TOKEN_LABELS = {
    "primary_color": "Primary Action Color (buttons, links, highlights)",
    "font_family": "Font Family (apply to :host)",
    "border_radius": "Border Radius",
    "background_color": "Background",
    "text_color": "Text Color",
}

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

CONTEXT_HTML_LIMIT = 1000


def default_payload() -> AdaptivePayload:
    return AdaptivePayload(target_selector=DEFAULT_TARGET, html=FALLBACK_HTML, css=FALLBACK_CSS, js="")


def build_generation_prompt(request: SynthesisRequest) -> str:
    """
    Prompt text for model-backed generators. The model is asked for a JSON
    object with the four wire fields and a single dismiss control.
    """
    design = f'Site design/style: "{request.style_description}"'
    if request.design_tokens:
        lines = [
            f"- {_TOKEN_LABELS.get(k, k)}: {v}" for k, v in sorted(request.design_tokens.items())
        ]
        design += "\nDesign tokens (use these exactly):\n" + "\n".join(lines)

    context = request.context_html[:CONTEXT_HTML_LIMIT]
    fields = ",\n".join(f'  "{w}": "..."' for w in WIRE_FIELDS)

    return (
        "You are a senior frontend engineer and UI designer.\n\n"
        f'Visitor intent: "{request.instruction}"\n'
        f'Current page section (HTML): "{context}"\n'
        f"{design}\n\n"
        "Build one small UI component that addresses the intent. It is mounted in an "
        "isolated shadow root on the host page and must look native to the site.\n"
        "- Style the wrapper with :host; never style body or html.\n"
        "- Plain JavaScript only; document refers to the shadow root.\n"
        f'- Include exactly one close button with class "{CLOSE_CLASS}" and wire it '
        "to remove the component.\n"
        "- Must work on mobile and desktop.\n\n"
        "Return ONLY a JSON object, no markdown:\n"
        "{\n" + fields + "\n}\n"
        f'Use "{DEFAULT_TARGET}" as the target selector for a floating component.'
    )


def parse_generator_output(raw: Mapping[str, Any] | str) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if not isinstance(raw, str):
        raise SynthesisError(f"generator returned {type(raw).__name__}, expected object or JSON text")

    text = _FENCE_RE.sub("", raw).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise SynthesisError("generator output is not valid JSON") from e
    if not isinstance(parsed, Mapping):
        raise SynthesisError("generator output must be a JSON object")
    return parsed


def _field(obj: Mapping[str, Any], wire: str) -> str | None:
    value = obj.get(wire)
    if value is None:
        return None
    value = str(value)
    return value if value.strip() else None


class UiSynthesisAdapter:
    """
    Strict boundary around the external UI generator.

    Every returned payload carries exactly one dismiss control. Without a
    generator the fixed corner notice is returned.
    """

    def __init__(self, generator: UiGenerator | None = None) -> None:
        self.generator = generator
        self._logger = get_logger(__name__)

    def synthesize(self, request: SynthesisRequest) -> AdaptivePayload:
        if self.generator is None:
            return default_payload()

        try:
            raw = self.generator(request)
        except Exception as e:
            raise SynthesisError(f"generator failed: {e}") from e

        obj = parse_generator_output(raw)

        html = _field(obj, "html_payload")
        css = _field(obj, "scoped_css")
        if html is None:
            self._logger.warning("generator omitted html; using fallback notice", extra={"feature": "synthesis"})
            html = FALLBACK_HTML
            css = css or FALLBACK_CSS

        return AdaptivePayload(
            target_selector=_field(obj, "injection_target_selector") or DEFAULT_TARGET,
            html=ensure_single_close(html),
            css=css or "",
            js=_field(obj, "javascript_payload") or "",
        )
