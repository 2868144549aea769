from __future__ import annotations

import json

import pytest
import simpy

from vi.core.config import CollectorConfig
from vi.core.rng import RNG
from vi.core.types import EXIT_INTENT, PAGE_VIEW
from vi.features.collector.injection import HOST_ID
from vi.features.collector.page import PageElement, SimulatedPage
from vi.features.collector.service import SignalCollector
from vi.features.collector.types import CollectorState
from vi.features.signals.schema import parse_signal_bundle
from vi.features.signals.types import FormStats

T_ORIGIN_MS = 1_772_366_400_000
HANDSHAKE = {"is_active": True, "allowed_domains": [], "settings": {"start_up_delay_ms": 1000}}


class RecordingTransport:
    def __init__(self, responses=None, config=None, fail_sends: bool = False) -> None:
        self.bodies: list[dict] = []
        self.responses = list(responses or [])
        self.config = config if config is not None else HANDSHAKE
        self.fail_sends = fail_sends

    def fetch_config(self, site_id: str):
        if isinstance(self.config, Exception):
            raise self.config
        return self.config

    def send(self, body):
        self.bodies.append(body)
        if self.fail_sends:
            raise ConnectionError("offline")
        return self.responses.pop(0) if self.responses else None


def _page(url: str = "https://www.shop.test/pricing") -> SimulatedPage:
    body = PageElement("body").add(
        PageElement("section", id="hero"),
        PageElement("div", id="pricing-table").add(PageElement("span", classes=("price",))),
        PageElement("button", id="buy").add(PageElement("span", classes=("label",))),
        PageElement("div", classes=("card",)),
        PageElement("form", id="signup").add(PageElement("input", id="email")),
    )
    return SimulatedPage(
        url=url,
        body=body,
        referrer="https://search.test/",
        user_agent="Mozilla/5.0 (X11; Linux x86_64) Firefox/126.0",
        time_origin_ms=T_ORIGIN_MS,
    )


def _collector(*, transport=None, page=None, cfg=CollectorConfig(), **kw):
    env = simpy.Environment()
    page = page or _page()
    transport = transport or RecordingTransport()
    c = SignalCollector(
        env=env,
        page=page,
        transport=transport,
        site_id="site_1",
        access_key="secret",
        session_id="sess_fixed",
        cfg=cfg,
        **kw,
    )
    return env, page, transport, c


def _advance(env: simpy.Environment, t: float) -> None:
    if t > env.now:
        env.run(until=t)


def _started(**kw):
    env, page, transport, c = _collector(**kw)
    c.bootstrap(HANDSHAKE)
    _advance(env, 1.001)
    assert c.state is CollectorState.ACTIVE
    return env, page, transport, c


def _el(page: SimulatedPage, selector: str) -> PageElement:
    el = page.query(selector)
    assert el is not None
    return el


def test_bootstrap_waits_for_start_up_delay_then_records_page_view():
    env, page, _, c = _collector()

    assert c.bootstrap(HANDSHAKE) is CollectorState.STARTING
    _advance(env, 0.999)
    assert c.state is CollectorState.STARTING
    c.on_click(_el(page, "#buy"))
    assert c.batch.interactions == {}

    _advance(env, 1.001)
    assert c.state is CollectorState.ACTIVE
    assert [e.type for e in c.batch.events] == [PAGE_VIEW]
    assert c.batch.events[0].payload == {"url": page.url}
    assert c.batch.events[0].timestamp == T_ORIGIN_MS + 1000


@pytest.mark.parametrize("delay_ms,expected_s", [(0, 1.0), (None, 1.0), (2500, 2.5)])
def test_handshake_start_up_delay(delay_ms, expected_s):
    _, _, _, c = _collector()
    settings = {} if delay_ms is None else {"start_up_delay_ms": delay_ms}

    c.bootstrap({"is_active": True, "allowed_domains": [], "settings": settings})

    assert c.start_up_delay_s == expected_s


@pytest.mark.parametrize(
    "handshake",
    [
        {"is_active": False, "allowed_domains": [], "settings": {}},
        {"is_active": True, "allowed_domains": ["other.test"], "settings": {}},
    ],
)
def test_inactive_site_or_foreign_domain_never_starts(handshake):
    env, _, transport, c = _collector()

    assert c.bootstrap(handshake) is CollectorState.DISABLED
    _advance(env, 60)

    assert c.state is CollectorState.DISABLED
    assert transport.bodies == []


def test_allowed_domain_matches_by_substring_and_fetches_config():
    transport = RecordingTransport(
        config={"is_active": True, "allowed_domains": ["shop.test"], "settings": {}}
    )
    env, _, _, c = _collector(transport=transport)

    assert c.bootstrap() is CollectorState.STARTING


def test_config_fetch_failure_disables():
    _, _, _, c = _collector(transport=RecordingTransport(config=TimeoutError("no config")))

    assert c.bootstrap() is CollectorState.DISABLED


def test_generated_session_id_is_seeded():
    page = _page()
    a, b = (
        SignalCollector(
            env=simpy.Environment(), page=page, transport=RecordingTransport(), site_id="s", rng=RNG(7)
        )
        for _ in range(2)
    )

    assert a.session_id == b.session_id
    prefix, ms, token = a.session_id.split("_")
    assert prefix == "sess"
    assert int(ms) == T_ORIGIN_MS
    assert len(token) == 13


def test_rage_click_counts_once_per_burst_and_dead_clicks_are_recorded():
    env, page, _, c = _started()
    card = _el(page, "div.card")

    for t in (1.1, 1.2, 1.3, 1.4, 1.5):
        _advance(env, t)
        c.on_click(card, x=10, y=20)
    assert c.batch.rage_clicks == 1

    for t in (3.0, 3.1, 3.2, 3.3, 5.0, 5.1):
        _advance(env, t)
        c.on_click(card, x=10, y=20)
    assert c.batch.rage_clicks == 2

    assert c.batch.interactions["div.card"].clicks == 11
    assert len(c.batch.dead_clicks) == CollectorConfig().max_dead_clicks
    assert c.batch.dead_clicks[0].selector == "div.card"


def test_clicks_on_interactive_elements_are_not_dead():
    env, page, _, c = _started()

    c.on_click(_el(page, "span.label"))  # inside a button
    c.on_click(_el(page, "#buy"))
    c.on_click(page.body)

    assert c.batch.dead_clicks == []
    assert "body" not in c.batch.interactions
    assert c.batch.interactions["#buy"].clicks == 1


def test_dwell_excludes_time_the_tab_was_hidden():
    env, page, transport, c = _started(cfg=CollectorConfig(batch_interval_s=1000.0))
    hero = _el(page, "#hero")

    _advance(env, 1.5)
    c.on_intersection(hero, 1.0)
    _advance(env, 6.5)
    c.on_visibility_change(False)
    _advance(env, 36.5)
    c.on_visibility_change(True)
    _advance(env, 41.5)
    c.on_intersection(hero, 0.0)

    body = c.flush()

    assert body is not None
    assert json.loads(body["signals"]["dwell_time"]) == {"hero": 10.0}


def test_dwell_checkpoint_keeps_counting_open_timers():
    env, page, _, c = _started(cfg=CollectorConfig(batch_interval_s=1000.0))
    pricing = _el(page, "#pricing-table")

    _advance(env, 2.0)
    c.on_intersection(pricing, 0.5)
    _advance(env, 5.0)
    first = c.flush()
    _advance(env, 7.0)
    second = c.flush()

    assert json.loads(first["signals"]["dwell_time"]) == {"pricing-table": 3.0}
    assert json.loads(second["signals"]["dwell_time"]) == {"pricing-table": 2.0}


def test_intersection_below_threshold_and_unobserved_elements_are_ignored():
    env, page, _, c = _started(cfg=CollectorConfig(batch_interval_s=1000.0))

    c.on_intersection(_el(page, "#hero"), 0.05)
    c.on_intersection(_el(page, "#buy"), 1.0)  # not a dwell candidate
    _advance(env, 5.0)

    assert c.dwell.checkpoint(env.now) == {}


def test_elements_added_later_are_observed():
    env, page, _, c = _started(cfg=CollectorConfig(batch_interval_s=1000.0))
    late = PageElement("article", id="reviews").add(PageElement("div", id="testimonial-1"))
    page.append(page.body, late)

    c.on_element_added(late)
    c.on_intersection(late.children[0], 1.0)
    _advance(env, 4.0)

    assert c.dwell.observed >= {"reviews", "testimonial-1"}
    assert c.dwell.checkpoint(env.now) == {"testimonial-1": 3.0}


def test_interval_flush_skips_empty_windows():
    env, _, transport, _ = _started()

    _advance(env, 61.5)

    assert len(transport.bodies) == 1
    sent = transport.bodies[0]
    assert sent["session_id"] == "sess_fixed"
    assert sent["access_key"] == "secret"
    assert sent["timestamp"] == T_ORIGIN_MS + 21_000
    batch = parse_signal_bundle(sent["signals"])
    assert [e.type for e in batch.events] == [PAGE_VIEW]
    assert batch.url == "https://www.shop.test/pricing"


def test_failed_send_is_dropped_not_retried():
    env, page, transport, c = _started(transport=RecordingTransport(fail_sends=True))

    body = c.flush()
    assert body is not None
    assert c.send_failures == 1
    assert c.batch.is_empty()

    assert c.flush() is None
    assert len(transport.bodies) == 1
    assert c.state is CollectorState.ACTIVE


def test_hesitation_fires_after_two_seconds_over_a_cta():
    env, page, _, c = _started()

    c.on_mouse_move(_el(page, "span.label"), 5, 5)
    _advance(env, 2.9)
    assert c.batch.hesitation_event is False
    _advance(env, 3.1)
    assert c.batch.hesitation_event is True


def test_hesitation_cancelled_by_click_or_leaving_the_cta():
    env, page, _, c = _started()
    buy = _el(page, "#buy")

    c.on_mouse_move(buy)
    _advance(env, 2.0)
    c.on_click(buy)
    _advance(env, 5.0)
    assert c.batch.hesitation_event is False

    c.on_mouse_move(buy)
    _advance(env, 6.0)
    c.on_mouse_move(_el(page, "div.card"))
    _advance(env, 10.0)
    assert c.batch.hesitation_event is False


def test_hover_is_debounced_to_the_last_target():
    env, page, _, c = _started()

    c.on_mouse_over(_el(page, "#hero"))
    _advance(env, 1.1)
    c.on_mouse_over(_el(page, "#buy"))
    _advance(env, 1.5)

    assert "#hero" not in c.batch.interactions
    assert c.batch.interactions["#buy"].hovers == 1


def test_text_signals():
    env, page, _, c = _started()

    c.on_copy("x" * 150)
    c.on_selection_change("abc")
    _advance(env, 1.5)
    c.on_selection_change("enterprise pricing tiers")
    _advance(env, 3.0)
    c.on_selection_change("enterprise pricing tiers")
    _advance(env, 4.5)
    c.on_selection_change("hi")
    _advance(env, 6.0)

    assert c.batch.copy_text == ["x" * 100]
    assert c.batch.text_selections == ["enterprise pricing tiers"]


def test_exit_intent_only_when_leaving_through_the_top():
    env, _, _, c = _started()

    c.on_mouse_leave(client_y=40)
    c.on_mouse_leave(client_y=0)

    assert [e.type for e in c.batch.events] == [PAGE_VIEW, EXIT_INTENT]


def test_scroll_velocity_and_depth_are_high_water_marks():
    env, _, _, c = _started()

    _advance(env, 1.05)
    c.on_scroll(100)  # too soon for a velocity sample
    assert c.batch.scroll_velocity == 0
    _advance(env, 1.5)
    c.on_scroll(1000)
    _advance(env, 2.5)
    c.on_scroll(1200)

    assert c.batch.scroll_velocity == pytest.approx(2000.0, rel=1e-3)
    assert c.batch.scroll_depth == 50


def test_forms_errors_mouse_and_performance_are_capped():
    env, page, _, c = _started()
    email = _el(page, "#email")

    c.on_focus(email)
    c.on_focus(email)
    c.on_input(email)
    c.on_submit(_el(page, "#signup"))
    for i in range(8):
        c.on_error("E" * 300, source="app.js")
    for i in range(80):
        _advance(env, 1.001 + (i + 1) * 0.2)
        c.on_mouse_move(_el(page, "div.card"), i, i)
    c.on_performance({"ttfb_ms": 120, "label": "x", "lcp_ms": 900.5})

    assert c.batch.forms == {"#signup": FormStats(focused_fields=["#email"], inputs=1, submitted=True)}
    assert c.batch.interactions["#email"].inputs == 1
    assert len(c.batch.errors) == 5
    assert len(c.batch.errors[0].message) == 200
    assert len(c.batch.mouse_trace) == 50
    assert c.batch.performance == {"ttfb_ms": 120.0, "lcp_ms": 900.5}


def _ui_response(target: str = "body", js: str = "") -> dict:
    return {
        "session_id": "sess_fixed",
        "intent_category": "Lead",
        "current_score": 85,
        "suggested_action": "x",
        "ui_payload": json.dumps(
            {
                "injection_target_selector": target,
                "html_payload": "<div class='offer'>Talk to sales</div>",
                "scoped_css": ".offer{padding:8px}",
                "javascript_payload": js,
            }
        ),
    }


def test_ui_payload_terminates_collection_and_mounts_once():
    transport = RecordingTransport(responses=[_ui_response(), _ui_response()])
    env, page, _, c = _started(transport=transport)

    _advance(env, 21.5)

    assert c.state is CollectorState.TERMINATED
    assert c.timers.active() == []
    assert c.dwell.connected is False
    mount = c.mount
    assert mount is not None and mount.pinned
    assert mount.close_controls() == 1
    assert ".offer{padding:8px}" in mount.stylesheet
    host = page.query(f"#{HOST_ID}")
    assert host is not None and host.parent is page.body

    c.on_click(_el(page, "#buy"))
    assert c.batch.is_empty()
    assert c.flush() is None
    assert c.handle_response(_ui_response()) is None

    _advance(env, 200)
    assert len(transport.bodies) == 1
    assert len(page.query_all(f"#{HOST_ID}")) == 1


def test_payload_is_mounted_at_a_found_target_or_pinned_otherwise():
    _, page, _, c = _started()
    mount = c.handle_response(_ui_response(target="#pricing-table"))

    assert mount is not None and not mount.pinned
    assert page.query(f"#{HOST_ID}").parent is page.query("#pricing-table")

    _, page2, _, c2 = _started()
    missing = c2.handle_response(_ui_response(target="#nowhere"))
    assert missing.pinned
    assert page2.query(f"#{HOST_ID}").parent is page2.body


def test_injected_script_errors_are_contained():
    calls: list[str] = []

    def runner(script: str) -> None:
        calls.append(script)
        raise RuntimeError("boom")

    _, _, _, c = _started(script_runner=runner)
    mount = c.handle_response(_ui_response(js="window.x()"))

    assert calls == ["window.x()"]
    assert mount.script_error is not None
    assert c.state is CollectorState.TERMINATED


def test_dismiss_control_removes_the_host():
    _, page, _, c = _started()
    c.handle_response(_ui_response())

    assert c.on_mount_click("div.offer") is False
    assert c.on_mount_click(".vi-internal-close") is True
    assert page.query(f"#{HOST_ID}") is None
    assert c.state is CollectorState.TERMINATED


def test_stop_cancels_timers_and_ignores_further_events():
    env, page, transport, c = _started()

    c.stop()
    c.on_click(_el(page, "#buy"))
    _advance(env, 100)

    assert c.state is CollectorState.STOPPED
    assert transport.bodies == []


def test_page_selectors_support_descendant_and_child_combinators():
    page = _page()
    price = _el(page, ".price")

    assert page.query("#pricing-table .price") is price
    assert page.query("body > div > span.price") is price
    assert page.query("body > .price") is None
    assert page.query("#buy .price") is None
    with pytest.raises(ValueError):
        page.query("#pricing-table:hover")
    with pytest.raises(ValueError):
        page.query("div > > span")


def test_combinator_target_is_mounted_from_the_batch_interval():
    transport = RecordingTransport(responses=[_ui_response(target="#pricing-table .price")])
    env, page, _, c = _started(transport=transport)

    c.on_click(_el(page, "#buy"))
    _advance(env, 21.5)

    assert c.state is CollectorState.TERMINATED
    assert c.mount is not None and not c.mount.pinned
    assert page.query(f"#{HOST_ID}").parent is page.query(".price")


def test_unparsable_target_falls_back_to_pinned_mount():
    transport = RecordingTransport(responses=[_ui_response(target="#pricing-table::after")])
    env, page, _, c = _started(transport=transport)

    c.on_click(_el(page, "#buy"))
    _advance(env, 21.5)

    assert c.state is CollectorState.TERMINATED
    assert c.mount is not None and c.mount.pinned
    assert page.query(f"#{HOST_ID}").parent is page.body


def test_only_the_reserved_control_dismisses():
    _, page, _, c = _started()
    response = _ui_response()
    response["ui_payload"] = json.dumps(
        {
            "injection_target_selector": "body",
            "html_payload": (
                "<div class='offer'><a class='close-btn'>x</a>"
                "<span data-action='close'>no thanks</span></div>"
            ),
        }
    )
    mount = c.handle_response(response)

    assert mount.close_controls() == 1
    assert c.on_mount_click("a.close-btn") is False
    assert c.on_mount_click("span[data-action]") is False
    assert page.query(f"#{HOST_ID}") is not None
    assert c.on_mount_click("button.vi-internal-close") is True
    assert page.query(f"#{HOST_ID}") is None
