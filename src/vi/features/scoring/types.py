from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from vi.core.types import IntentCategory

RETENTION_OFFER = (
    "Offer a time-limited discount or incentive to a high-intent visitor who is about to leave."
)
PRIORITY_CONTACT = "Invite the visitor to a priority conversation with the sales team right now."
SOFT_CONTACT = (
    "Encourage the visitor to get in touch, with a helpful offer or resource related to "
    "what they are reading."
)


@dataclass(frozen=True, slots=True)
class KeywordRule:
    """
    Dwell-time rule: an element whose identifier contains any keyword
    (case-insensitive) adds weight once.
    """

    family: str
    keywords: tuple[str, ...]
    weight: int

    def matches(self, identifier: str) -> bool:
        ident = identifier.lower()
        return any(k in ident for k in self.keywords)


DEFAULT_KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(family="pricing", keywords=("pricing",), weight=15),
    KeywordRule(family="features", keywords=("features", "benefit"), weight=5),
    KeywordRule(family="social_proof", keywords=("testimonial", "review"), weight=10),
    KeywordRule(family="docs", keywords=("doc", "tech"), weight=5),
)


@dataclass(frozen=True)
class ScoringRules:
    """
    Fixed heuristic weights.

    cumulative_keywords=False applies only the first matching keyword family
    per element; True adds every matching family.
    """

    keyword_rules: tuple[KeywordRule, ...] = DEFAULT_KEYWORD_RULES
    cumulative_keywords: bool = False

    baseline: int = 40
    fast_scroll_px_s: float = 2000.0
    fast_scroll_weight: int = -10
    copy_weight: int = 15
    selection_weight: int = 10
    hesitation_weight: int = 10
    deep_scroll_pct: int = 75
    deep_scroll_weight: int = 10
    mid_scroll_pct: int = 50
    mid_scroll_weight: int = 5
    frustration_weight: int = 5

    # category bands: score < researcher_min -> Bouncer, score > lead_above -> Lead
    researcher_min: int = 30
    lead_above: int = 70

    # action bands (no exit intent)
    priority_contact_above: int = 80
    soft_contact_above: int = 50

    retention_action: str = RETENTION_OFFER
    priority_action: str = PRIORITY_CONTACT
    soft_action: str = SOFT_CONTACT


@dataclass(frozen=True, slots=True)
class ScoreResult:
    score: int
    category: IntentCategory
    suggested_action: str | None


def rules_from_config(raw: Mapping[str, Any] | None) -> ScoringRules:
    """
    Build ScoringRules from the `scoring:` config section.

    keyword_rules, when present, replaces the default table entirely:

        scoring:
          cumulative_keywords: false
          keyword_rules:
            - {family: pricing, keywords: [pricing], weight: 15}
          copy_weight: 15
    """
    if not raw:
        return ScoringRules()

    unknown = sorted(set(raw) - set(ScoringRules.__dataclass_fields__))
    if unknown:
        raise ValueError(f"Unknown scoring settings: {unknown}")

    rules = ScoringRules()
    updates: dict[str, Any] = {}

    table = raw.get("keyword_rules")
    if table is not None:
        if not isinstance(table, list):
            raise ValueError("scoring.keyword_rules must be a list")
        parsed: list[KeywordRule] = []
        for i, row in enumerate(table):
            if not isinstance(row, Mapping):
                raise ValueError(f"scoring.keyword_rules[{i}] must be a mapping")
            keywords = row.get("keywords") or []
            if isinstance(keywords, str):
                keywords = [keywords]
            if not keywords:
                raise ValueError(f"scoring.keyword_rules[{i}] needs at least one keyword")
            parsed.append(
                KeywordRule(
                    family=str(row.get("family") or keywords[0]),
                    keywords=tuple(str(k).lower() for k in keywords),
                    weight=int(row["weight"]),
                )
            )
        updates["keyword_rules"] = tuple(parsed)

    for name in ScoringRules.__dataclass_fields__:
        if name == "keyword_rules" or name not in raw:
            continue
        current = getattr(rules, name)
        value = raw[name]
        if isinstance(current, bool):
            updates[name] = bool(value)
        elif isinstance(current, int):
            updates[name] = int(value)
        elif isinstance(current, float):
            updates[name] = float(value)
        else:
            updates[name] = str(value)

    out = replace(rules, **updates)
    if not (0 <= out.researcher_min <= out.lead_above <= 100):
        raise ValueError("scoring bands must satisfy 0 <= researcher_min <= lead_above <= 100")
    return out
