from __future__ import annotations

import random

import pytest

from vi.core.types import EXIT_INTENT, IntentCategory
from vi.features.scoring.service import ScoringService
from vi.features.scoring.types import (
    PRIORITY_CONTACT,
    RETENTION_OFFER,
    SOFT_CONTACT,
    KeywordRule,
    ScoringRules,
    rules_from_config,
)
from vi.features.signals.types import CustomEvent, DeadClick, SignalBatch


def _exit_event() -> CustomEvent:
    return CustomEvent(type=EXIT_INTENT, timestamp=1_700_000_000_000)


def test_pricing_dwell_and_deep_scroll_make_a_researcher_with_soft_contact() -> None:
    svc = ScoringService()
    batch = SignalBatch(dwell_time={"pricing-table": 12.0}, scroll_depth=80)

    res = svc.score(40, batch)

    assert res.score == 65
    assert res.category is IntentCategory.RESEARCHER
    assert res.suggested_action == SOFT_CONTACT


def test_exit_intent_for_a_lead_suggests_retention_offer() -> None:
    svc = ScoringService()
    res = svc.score(90, SignalBatch(events=[_exit_event()]))

    assert res.category is IntentCategory.LEAD
    assert res.suggested_action == RETENTION_OFFER


def test_exit_intent_for_non_lead_suggests_nothing() -> None:
    svc = ScoringService()

    researcher = svc.score(60, SignalBatch(events=[_exit_event()]))
    bouncer = svc.score(10, SignalBatch(events=[_exit_event()]))

    assert researcher.category is IntentCategory.RESEARCHER
    assert researcher.suggested_action is None
    assert bouncer.category is IntentCategory.BOUNCER
    assert bouncer.suggested_action is None


def test_zero_previous_score_is_seeded_to_baseline_even_for_empty_batch() -> None:
    svc = ScoringService()

    res = svc.score(0, SignalBatch())

    assert res.score == 40
    assert res.category is IntentCategory.RESEARCHER
    assert res.suggested_action is None
    # None is treated as "no previous score"
    assert svc.score(None, SignalBatch()).score == 40


def test_empty_batch_leaves_non_zero_score_unchanged() -> None:
    svc = ScoringService()
    for prev in (1, 29, 55, 100):
        assert svc.score(prev, SignalBatch()).score == prev


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (29, IntentCategory.BOUNCER),
        (30, IntentCategory.RESEARCHER),
        (70, IntentCategory.RESEARCHER),
        (71, IntentCategory.LEAD),
    ],
)
def test_category_boundaries(score: int, expected: IntentCategory) -> None:
    assert ScoringService().categorize(score) is expected


def test_action_bands_without_exit_intent() -> None:
    svc = ScoringService()
    lead = IntentCategory.LEAD
    researcher = IntentCategory.RESEARCHER

    assert svc.suggest_action(score=81, category=lead, exit_intent=False) == PRIORITY_CONTACT
    assert svc.suggest_action(score=80, category=lead, exit_intent=False) == SOFT_CONTACT
    assert svc.suggest_action(score=51, category=researcher, exit_intent=False) == SOFT_CONTACT
    assert svc.suggest_action(score=50, category=researcher, exit_intent=False) is None


def test_keyword_families_first_match_only_per_element() -> None:
    svc = ScoringService()
    # "pricing" wins; the review family is not added on top.
    res = svc.score(40, SignalBatch(dwell_time={"pricing-reviews": 3.0}))
    assert res.score == 55


def test_keyword_families_cumulative_when_configured() -> None:
    svc = ScoringService(ScoringRules(cumulative_keywords=True))
    res = svc.score(40, SignalBatch(dwell_time={"pricing-reviews": 3.0}))
    assert res.score == 65


def test_each_family_weight_applies_once_per_element() -> None:
    svc = ScoringService()
    batch = SignalBatch(
        dwell_time={
            "Features-grid": 1.0,
            "benefit-list": 1.0,
            "customer-testimonials": 1.0,
            "api-docs": 1.0,
            "hero": 30.0,
        }
    )
    # 5 + 5 + 10 + 5, hero matches nothing
    assert svc.score(40, batch).score == 65


def test_behavioral_weights() -> None:
    svc = ScoringService()

    assert svc.score(50, SignalBatch(scroll_velocity=2000.0)).score == 50
    assert svc.score(50, SignalBatch(scroll_velocity=2000.1)).score == 40
    assert svc.score(50, SignalBatch(copy_text=["a", "b"])).score == 65
    assert svc.score(50, SignalBatch(text_selections=["enterprise plan"])).score == 60
    assert svc.score(50, SignalBatch(hesitation_event=True)).score == 60


@pytest.mark.parametrize(
    ("depth", "delta"),
    [(49, 0), (50, 5), (75, 5), (76, 10), (100, 10)],
)
def test_scroll_depth_bands(depth: int, delta: int) -> None:
    assert ScoringService().score(40, SignalBatch(scroll_depth=depth)).score == 40 + delta


def test_frustration_adds_once_and_never_penalizes() -> None:
    svc = ScoringService()
    dead = [DeadClick(selector="p.copy", x=1, y=2, timestamp=0)]

    assert svc.score(40, SignalBatch(rage_clicks=3)).score == 45
    assert svc.score(40, SignalBatch(dead_clicks=dead)).score == 45
    assert svc.score(40, SignalBatch(rage_clicks=2, dead_clicks=dead)).score == 45


def test_score_is_clamped() -> None:
    svc = ScoringService()
    hot = SignalBatch(
        dwell_time={"pricing": 1.0, "pricing-2": 1.0, "reviews": 1.0},
        copy_text=["x"],
        text_selections=["hello there"],
        hesitation_event=True,
        scroll_depth=90,
    )
    cold = SignalBatch(scroll_velocity=5000.0)

    assert svc.score(95, hot).score == 100
    assert svc.score(5, cold).score == 0
    assert svc.score(5, cold).category is IntentCategory.BOUNCER


def test_score_always_within_bounds_for_random_batches() -> None:
    svc = ScoringService()
    r = random.Random(7)
    ids = ["pricing", "features", "reviews", "docs", "hero", "footer"]

    for _ in range(300):
        batch = SignalBatch(
            dwell_time={i: r.random() * 10 for i in r.sample(ids, r.randint(0, len(ids)))},
            scroll_velocity=r.random() * 5000,
            scroll_depth=r.randint(0, 100),
            hesitation_event=r.random() < 0.5,
            rage_clicks=r.randint(0, 3),
            copy_text=["x"] if r.random() < 0.5 else [],
            text_selections=["hello"] if r.random() < 0.5 else [],
            events=[_exit_event()] if r.random() < 0.3 else [],
        )
        res = svc.score(r.randint(0, 100), batch)
        assert 0 <= res.score <= 100
        assert res.category is svc.categorize(res.score)


def test_rules_from_config_replaces_keyword_table() -> None:
    rules = rules_from_config(
        {
            "keyword_rules": [
                {"family": "demo", "keywords": ["demo", "trial"], "weight": 20},
            ],
            "copy_weight": 1,
        }
    )
    svc = ScoringService(rules)

    assert rules.keyword_rules == (KeywordRule(family="demo", keywords=("demo", "trial"), weight=20),)
    assert svc.score(40, SignalBatch(dwell_time={"free-TRIAL": 1.0})).score == 60
    assert svc.score(40, SignalBatch(dwell_time={"pricing": 1.0})).score == 40
    assert svc.score(40, SignalBatch(copy_text=["x"])).score == 41


def test_rules_from_config_rejects_unknown_and_bad_bands() -> None:
    with pytest.raises(ValueError):
        rules_from_config({"copy_wieght": 3})
    with pytest.raises(ValueError):
        rules_from_config({"researcher_min": 80, "lead_above": 70})
    with pytest.raises(ValueError):
        rules_from_config({"keyword_rules": [{"family": "x", "keywords": [], "weight": 1}]})
