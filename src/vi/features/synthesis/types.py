from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

CLOSE_CLASS = "vi-internal-close"
DEFAULT_TARGET = "body"

# wire name -> AdaptivePayload attribute
WIRE_FIELDS: dict[str, str] = {
    "injection_target_selector": "target_selector",
    "html_payload": "html",
    "scoped_css": "css",
    "javascript_payload": "js",
}


class SynthesisError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class AdaptivePayload:
    target_selector: str = DEFAULT_TARGET
    html: str = ""
    css: str = ""
    js: str = ""

    def to_wire(self) -> dict[str, str]:
        return {wire: getattr(self, attr) for wire, attr in WIRE_FIELDS.items()}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any] | str) -> AdaptivePayload:
        if isinstance(raw, str):
            raw = json.loads(raw)
        if not isinstance(raw, Mapping):
            raise ValueError("ui payload must be a JSON object")
        kwargs = {
            attr: str(raw[wire]) for wire, attr in WIRE_FIELDS.items() if raw.get(wire) is not None
        }
        return cls(**kwargs)


@dataclass(frozen=True)
class SynthesisRequest:
    instruction: str
    context_html: str = ""
    style_description: str = "Standard business website"
    design_tokens: dict[str, str] = field(default_factory=dict)


class UiGenerator(Protocol):
    """
    External generative call. Returns a mapping with the wire field names,
    or JSON text of one (optionally wrapped in a markdown code fence).
    """

    def __call__(self, request: SynthesisRequest) -> Mapping[str, Any] | str: ...
