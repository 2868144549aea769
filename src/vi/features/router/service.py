from __future__ import annotations

import time
from collections.abc import Callable

from vi.core.deadline import Deadline
from vi.core.logging import get_logger
from vi.core.types import IntentCategory, UiMode
from vi.features.scoring.types import ScoreResult
from vi.features.signals.types import SignalBatch
from vi.features.sites.types import SiteConfig
from vi.features.synthesis.service import UiSynthesisAdapter
from vi.features.synthesis.types import SynthesisRequest

from .query import build_instruction, build_interest_query
from .types import ContextFragment, ContextLookup, IntentKey, RouteDecision, Template, TemplateStore


class InMemoryTemplateStore:
    def __init__(self, templates: list[Template] | None = None) -> None:
        self.templates: dict[tuple[str, str], Template] = {}
        for t in templates or []:
            self.save(t)

    def find_active(self, site_id: str, intent_key: str) -> Template | None:
        t = self.templates.get((site_id, intent_key))
        return t if t is not None and t.is_active else None

    def save(self, template: Template) -> None:
        self.templates[(template.site_id, template.intent_key)] = template


def resolve_intent_key(batch: SignalBatch, category: IntentCategory) -> IntentKey | None:
    if batch.exit_intent:
        return IntentKey.BOUNCE_RISK
    if batch.hesitation_event:
        return IntentKey.HESITATION
    if category is IntentCategory.LEAD:
        return IntentKey.HIGH_INTENT
    if category is IntentCategory.RESEARCHER:
        return IntentKey.RESEARCHER
    return None


class DecisionRouter:
    """
    Decides whether to produce an adaptive UI, and from where.

    Pre-generated templates are served verbatim with no lookup. Otherwise the
    payload is synthesized on demand from a context fragment. The on-demand
    path is bounded by generation_timeout_s and never raises: any failure
    yields no payload.
    """

    def __init__(
        self,
        *,
        templates: TemplateStore,
        synthesis: UiSynthesisAdapter,
        lookup: ContextLookup | None = None,
        generation_timeout_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.templates = templates
        self.synthesis = synthesis
        self.lookup = lookup
        self.generation_timeout_s = float(generation_timeout_s)
        self.clock = clock
        self._logger = get_logger(__name__)

    def route(
        self,
        *,
        site: SiteConfig,
        batch: SignalBatch,
        result: ScoreResult,
        url: str | None = None,
        referrer: str | None = None,
        session_id: str | None = None,
    ) -> RouteDecision:
        key = resolve_intent_key(batch, result.category)
        generate = (
            key is not None
            or result.category is IntentCategory.LEAD
            or result.suggested_action is not None
        )
        if not generate:
            return RouteDecision(intent_key=None, should_generate=False)

        log_extra = {
            "site_id": site.site_id,
            "session_id": session_id,
            "intent_key": key.value if key else None,
        }

        try:
            template = self.templates.find_active(site.site_id, key.value) if key else None

            if (
                site.settings.ui_mode is UiMode.PREGENERATED
                and template is not None
                and template.has_pregenerated()
            ):
                self._logger.info("route", extra={**log_extra, "reason": "pregenerated"})
                return RouteDecision(
                    intent_key=key,
                    should_generate=True,
                    payload=template.to_payload(),
                    source=UiMode.PREGENERATED.value,
                )

            deadline = Deadline(self.generation_timeout_s, clock=self.clock)
            fragment = self._lookup(deadline, site=site, batch=batch, url=url)

            base = template.prompt if template is not None and template.prompt.strip() else None
            request = SynthesisRequest(
                instruction=build_instruction(
                    base or result.suggested_action, batch, url=url, referrer=referrer
                ),
                context_html=fragment.raw_html if fragment is not None else "",
                style_description=site.settings.style_description,
                design_tokens=dict(site.settings.design_tokens),
            )
            payload = deadline.run("synthesis", lambda: self.synthesis.synthesize(request))
        except Exception as e:
            self._logger.warning(
                "generation failed; no ui payload",
                extra={**log_extra, "reason": "generation_failed", "error": repr(e)},
            )
            return RouteDecision(intent_key=key, should_generate=True)

        self._logger.info("route", extra={**log_extra, "reason": "on_demand"})
        return RouteDecision(
            intent_key=key,
            should_generate=True,
            payload=payload,
            source=UiMode.ON_DEMAND.value,
        )

    def _lookup(
        self, deadline: Deadline, *, site: SiteConfig, batch: SignalBatch, url: str | None
    ) -> ContextFragment | None:
        if self.lookup is None:
            return None
        lookup = self.lookup
        query = build_interest_query(batch)
        hits = deadline.run(
            "context_lookup",
            lambda: lookup.search(site_id=site.site_id, query=query, url=url, limit=1),
        )
        return hits[0] if hits else None
