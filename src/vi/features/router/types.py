from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from vi.features.synthesis.types import DEFAULT_TARGET, AdaptivePayload


class IntentKey(str, Enum):
    BOUNCE_RISK = "bounce_risk"
    HESITATION = "hesitation"
    HIGH_INTENT = "high_intent"
    RESEARCHER = "researcher"


@dataclass(frozen=True, slots=True)
class Template:
    """
    Operator-authored entry for (site, intent key).

    prompt steers on-demand generation; html/css/js, when present, are a
    pre-generated payload served as-is.
    """

    site_id: str
    intent_key: str
    prompt: str = ""
    description: str | None = None
    html: str = ""
    css: str = ""
    js: str = ""
    target_selector: str = DEFAULT_TARGET
    is_active: bool = True

    def has_pregenerated(self) -> bool:
        return bool(self.html.strip())

    def to_payload(self) -> AdaptivePayload:
        return AdaptivePayload(
            target_selector=self.target_selector or DEFAULT_TARGET,
            html=self.html,
            css=self.css,
            js=self.js,
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Template:
        site_id = str(raw.get("site_id") or "").strip()
        intent_key = str(raw.get("intent_key") or "").strip()
        if not site_id or not intent_key:
            raise ValueError("template entries need site_id and intent_key")
        valid = {k.value for k in IntentKey}
        if intent_key not in valid:
            raise ValueError(f"template intent_key must be one of {sorted(valid)}, got {intent_key!r}")
        return cls(
            site_id=site_id,
            intent_key=intent_key,
            prompt=str(raw.get("prompt") or ""),
            description=raw.get("description"),
            html=str(raw.get("html") or ""),
            css=str(raw.get("css") or ""),
            js=str(raw.get("js") or ""),
            target_selector=str(raw.get("target_selector") or DEFAULT_TARGET),
            is_active=bool(raw.get("is_active", True)),
        )


class TemplateStore(Protocol):
    def find_active(self, site_id: str, intent_key: str) -> Template | None: ...

    def save(self, template: Template) -> None: ...


@dataclass(frozen=True, slots=True)
class ContextFragment:
    selector: str
    raw_html: str
    description: str | None = None
    url: str | None = None
    score: float = 0.0


class ContextLookup(Protocol):
    """Semantic search over the site's indexed content."""

    def search(
        self, *, site_id: str, query: str, url: str | None = None, limit: int = 1
    ) -> list[ContextFragment]: ...


@dataclass(frozen=True, slots=True)
class RouteDecision:
    intent_key: IntentKey | None
    should_generate: bool
    payload: AdaptivePayload | None = None
    source: str | None = None  # "pregenerated" | "on_demand"
