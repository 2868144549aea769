from __future__ import annotations

from vi.core.types import IntentCategory
from vi.features.signals.types import SignalBatch

from .types import ScoreResult, ScoringRules


class ScoringService:
    """
    Deterministic intent scoring: (previous score, batch) -> (score, category, action).

    Pure: no I/O, no clock, no randomness. The heuristic is a fixed table
    (ScoringRules) so it can be tested against known weights.
    """

    def __init__(self, rules: ScoringRules | None = None) -> None:
        self.rules = rules or ScoringRules()

    def keyword_weight(self, identifier: str) -> int:
        total = 0
        for rule in self.rules.keyword_rules:
            if rule.matches(identifier):
                total += rule.weight
                if not self.rules.cumulative_keywords:
                    break
        return total

    def raw_score(self, previous_score: int, batch: SignalBatch) -> int:
        r = self.rules
        score = int(previous_score)

        # Fresh sessions start from the neutral researcher baseline.
        if score == 0:
            score = r.baseline

        for identifier in batch.dwell_time:
            score += self.keyword_weight(identifier)

        if batch.scroll_velocity > r.fast_scroll_px_s:
            score += r.fast_scroll_weight
        if batch.copy_text:
            score += r.copy_weight
        if batch.text_selections:
            score += r.selection_weight
        if batch.hesitation_event:
            score += r.hesitation_weight

        if batch.scroll_depth > r.deep_scroll_pct:
            score += r.deep_scroll_weight
        elif batch.scroll_depth >= r.mid_scroll_pct:
            score += r.mid_scroll_weight

        # engaged but frustrated
        if batch.rage_clicks > 0 or batch.dead_clicks:
            score += r.frustration_weight

        return score

    def categorize(self, score: int) -> IntentCategory:
        if score < self.rules.researcher_min:
            return IntentCategory.BOUNCER
        if score <= self.rules.lead_above:
            return IntentCategory.RESEARCHER
        return IntentCategory.LEAD

    def suggest_action(
        self, *, score: int, category: IntentCategory, exit_intent: bool
    ) -> str | None:
        r = self.rules
        if exit_intent:
            return r.retention_action if category is IntentCategory.LEAD else None
        if score > r.priority_contact_above:
            return r.priority_action
        if score > r.soft_contact_above:
            return r.soft_action
        return None

    def score(self, previous_score: int | None, batch: SignalBatch) -> ScoreResult:
        raw = self.raw_score(previous_score or 0, batch)
        score = min(max(raw, 0), 100)
        category = self.categorize(score)
        action = self.suggest_action(score=score, category=category, exit_intent=batch.exit_intent)
        return ScoreResult(score=score, category=category, suggested_action=action)
