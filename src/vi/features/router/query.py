from __future__ import annotations

import re
from urllib.parse import urlsplit

from vi.features.signals.types import SignalBatch

DEFAULT_QUERY = "general interest in product"
FRUSTRATION_PHRASE = "frustrated by unresponsive elements"
GENERIC_INSTRUCTION = "High intent engagement"

TOP_DWELL = 3
HIGHLIGHTED_TERMS = 3
FULL_READ_DEPTH = 80

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEP_RE = re.compile(r"[-_.#\s]+")


def humanize(identifier: str) -> str:
    """pricing-table / pricingTable / pricing_table -> "pricing table"."""
    words = _SEP_RE.sub(" ", _CAMEL_RE.sub(" ", identifier))
    return " ".join(words.split()).lower()


def top_dwell_ids(batch: SignalBatch, n: int = TOP_DWELL) -> list[str]:
    ranked = sorted(batch.dwell_time.items(), key=lambda kv: kv[1], reverse=True)
    return [ident for ident, _ in ranked[:n]]


def build_interest_query(batch: SignalBatch) -> str:
    parts: list[str] = []
    parts.extend(t.strip() for t in batch.copy_text if t.strip())
    parts.extend(t.strip() for t in batch.text_selections if t.strip())
    parts.extend(h for h in (humanize(i) for i in top_dwell_ids(batch)) if h)
    if batch.dead_clicks:
        parts.append(FRUSTRATION_PHRASE)
    return " ".join(parts) if parts else DEFAULT_QUERY


def _hostname(url: str | None) -> str:
    if not url:
        return ""
    return (urlsplit(url).hostname or "").lower()


def build_narrative(batch: SignalBatch, *, url: str | None, referrer: str | None) -> list[str]:
    notes: list[str] = []
    if batch.scroll_depth > FULL_READ_DEPTH:
        notes.append("The visitor has read the full page.")

    terms = [t.strip() for t in batch.text_selections if t.strip()][:HIGHLIGHTED_TERMS]
    if terms:
        quoted = ", ".join(f'"{t}"' for t in terms)
        notes.append(f"They highlighted {quoted}.")

    if batch.dead_clicks:
        notes.append("They clicked on elements that did not respond and may be frustrated.")

    ref_host = _hostname(referrer)
    page_host = _hostname(url)
    if ref_host and page_host and ref_host != page_host:
        notes.append(f"They arrived from another site ({ref_host}).")
    return notes


def build_instruction(
    base: str | None, batch: SignalBatch, *, url: str | None, referrer: str | None
) -> str:
    head = (base or "").strip() or GENERIC_INSTRUCTION
    notes = build_narrative(batch, url=url, referrer=referrer)
    if not notes:
        return head
    return head + "\n\nVisitor context: " + " ".join(notes)
