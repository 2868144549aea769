from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import simpy

from vi.core.config import CollectorConfig
from vi.core.ids import new_session_id
from vi.core.logging import get_logger
from vi.core.rng import RNG
from vi.core.types import EXIT_INTENT, PAGE_VIEW
from vi.features.signals.schema import batch_to_wire
from vi.features.signals.types import (
    CustomEvent,
    DeadClick,
    ErrorRecord,
    FormStats,
    InteractionStats,
    MouseSample,
    SignalBatch,
)
from vi.features.sites.types import domain_allowed
from vi.features.synthesis.types import AdaptivePayload

from .detectors import RageClickDetector, ScrollSampler, is_interactive, selector_for
from .dwell import DwellTracker
from .injection import HOST_ID, IsolatedMount, ScriptRunner, build_mount, is_generic_target
from .timers import TimerHandle, Timers
from .types import (
    CTA_SELECTOR,
    DWELL_CANDIDATE_SELECTOR,
    ROOT_TAGS,
    CollectorState,
    Element,
    HostPage,
    Transport,
)


class SignalCollector:
    """
    Page-side signal collection for one page load.

    The SimPy environment is the page clock (env.now, seconds). The host feeds
    DOM events in through the on_* handlers; they are ignored unless the
    collector is ACTIVE. Every batch_interval_s the current window is sent and
    the accumulators reset before the send. A response carrying a UI payload
    terminates collection for the rest of the page view.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        page: HostPage,
        transport: Transport,
        site_id: str,
        access_key: str | None = None,
        session_id: str | None = None,
        cfg: CollectorConfig = CollectorConfig(),
        rng: RNG | None = None,
        script_runner: ScriptRunner | None = None,
    ) -> None:
        self.env = env
        self.page = page
        self.transport = transport
        self.site_id = site_id
        self.access_key = access_key
        self.cfg = cfg
        self.script_runner = script_runner
        self._logger = get_logger(__name__)

        self.session_id = session_id or new_session_id(now_ms=self._now_ms(), rng=rng or RNG())
        self.state = CollectorState.IDLE
        self.start_up_delay_s = cfg.start_up_delay_s
        self.timers = Timers(env)
        self.dwell = DwellTracker(threshold=cfg.intersection_threshold)
        self.rage = RageClickDetector(
            window_s=cfg.rage_click_window_s, threshold=cfg.rage_click_threshold
        )
        self.scroll = ScrollSampler(min_interval_s=cfg.scroll_sample_interval_s)

        self.batch = SignalBatch()
        self.mount: IsolatedMount | None = None
        self.batches_sent = 0
        self.send_failures = 0

        self._hesitation: TimerHandle | None = None
        self._hover: TimerHandle | None = None
        self._last_hover: Element | None = None
        self._selection: TimerHandle | None = None
        self._last_mouse_sample: float | None = None

    # ---- clock / logging ----

    def _now_ms(self) -> int:
        return int(self.page.time_origin_ms + self.env.now * 1000.0)

    def _log_extra(self, **kw: Any) -> dict[str, Any]:
        return {
            "feature": "collector",
            "site_id": self.site_id,
            "session_id": self.session_id,
            "state": self.state.value,
            **kw,
        }

    @property
    def active(self) -> bool:
        return self.state is CollectorState.ACTIVE

    # ---- lifecycle ----

    def bootstrap(self, site_config: Mapping[str, Any] | None = None) -> CollectorState:
        """
        Apply the handshake and schedule start().

        Without a site_config the handshake is fetched through the transport.
        Any failure leaves the collector DISABLED.
        """
        if self.state is not CollectorState.IDLE:
            return self.state

        if site_config is None:
            try:
                site_config = self.transport.fetch_config(self.site_id)
            except Exception as e:
                self.state = CollectorState.DISABLED
                self._logger.warning(
                    "config fetch failed", extra=self._log_extra(reason="handshake", error=repr(e))
                )
                return self.state

        if not site_config.get("is_active", False):
            self.state = CollectorState.DISABLED
            self._logger.info("site disabled", extra=self._log_extra(reason="inactive"))
            return self.state

        if not domain_allowed(site_config.get("allowed_domains") or (), self.page.hostname):
            self.state = CollectorState.DISABLED
            self._logger.warning("domain not allowed", extra=self._log_extra(reason="domain"))
            return self.state

        settings = site_config.get("settings") or {}
        delay_ms = settings.get("start_up_delay_ms")
        if delay_ms:
            self.start_up_delay_s = float(delay_ms) / 1000.0

        self.state = CollectorState.STARTING
        self.timers.set_timeout(self.start_up_delay_s, self.start, label="start_up")
        self._logger.info(
            "config loaded", extra=self._log_extra(duration_ms=int(self.start_up_delay_s * 1000))
        )
        return self.state

    def start(self) -> None:
        if self.state not in (CollectorState.IDLE, CollectorState.STARTING):
            return
        self.state = CollectorState.ACTIVE
        now = self.env.now

        self.dwell.document_visible = self.page.visible
        for el in self.page.query_all(DWELL_CANDIDATE_SELECTOR):
            self.dwell.observe(el)
        self.scroll.reset(y=0.0, now=now)

        self.record_event(PAGE_VIEW, {"url": self.page.url})
        self.timers.set_interval(self.cfg.batch_interval_s, self.flush, label="batch")
        self._logger.info("tracking started", extra=self._log_extra())

    def _halt(self, state: CollectorState) -> None:
        self.state = state
        self.timers.cancel_all()
        self.dwell.disconnect()
        self._hesitation = None
        self._hover = None
        self._selection = None

    def stop(self) -> None:
        if self.state in (
            CollectorState.TERMINATED,
            CollectorState.DISABLED,
            CollectorState.STOPPED,
        ):
            return
        self._halt(CollectorState.STOPPED)
        self._logger.info("tracking stopped", extra=self._log_extra())

    def terminate(self) -> None:
        if self.state is CollectorState.TERMINATED:
            return
        self._halt(CollectorState.TERMINATED)
        self._logger.info("tracking terminated", extra=self._log_extra(reason="ui_injected"))

    # ---- batching ----

    def _interaction(self, element: Element, kind: str) -> None:
        if element.tag in ROOT_TAGS:
            return
        stats = self.batch.interactions.setdefault(selector_for(element), InteractionStats())
        if kind == "click":
            stats.clicks += 1
        elif kind == "hover":
            stats.hovers += 1
        elif kind == "input":
            stats.inputs += 1
        stats.last_seen = self._now_ms()

    def build_body(self, batch: SignalBatch) -> dict[str, Any]:
        return {
            "site_id": self.site_id,
            "access_key": self.access_key,
            "session_id": self.session_id,
            "signals": batch_to_wire(batch),
            "url": self.page.url,
            "referrer": self.page.referrer,
            "user_agent": self.page.user_agent,
            "timestamp": self._now_ms(),
        }

    def flush(self) -> dict[str, Any] | None:
        """
        Send the current window. Returns the body sent, or None when there was
        nothing to send. Delivery is at most once: the window is reset before
        the transport is called and a failed send is dropped.
        """
        if not self.active:
            return None

        batch = self.batch
        batch.dwell_time = self.dwell.checkpoint(self.env.now)
        batch.url = self.page.url
        batch.referrer = self.page.referrer
        if batch.is_empty():
            return None

        self.batch = SignalBatch()
        self._last_mouse_sample = None
        body = self.build_body(batch)

        try:
            response = self.transport.send(body)
        except Exception as e:
            self.send_failures += 1
            self._logger.warning("batch send failed", extra=self._log_extra(error=repr(e)))
            return body

        self.batches_sent += 1
        if response:
            self.handle_response(response)
        return body

    # ---- delivery ----

    def handle_response(self, response: Mapping[str, Any]) -> IsolatedMount | None:
        raw = response.get("ui_payload")
        if not raw:
            return None
        if self.mount is not None or self.state is CollectorState.TERMINATED:
            return None
        if self.page.query(f"#{HOST_ID}") is not None:
            return None

        try:
            payload = AdaptivePayload.from_wire(raw)
        except ValueError as e:
            self._logger.warning("bad ui payload", extra=self._log_extra(error=repr(e)))
            return None

        self.terminate()
        return self.inject(payload)

    def inject(self, payload: AdaptivePayload) -> IsolatedMount | None:
        if self.mount is not None or self.page.query(f"#{HOST_ID}") is not None:
            return None

        target = None
        if not is_generic_target(payload.target_selector):
            try:
                target = self.page.query(payload.target_selector)
            except ValueError as e:
                self._logger.warning(
                    "ui target lookup failed",
                    extra=self._log_extra(reason=payload.target_selector, error=repr(e)),
                )
        mount = build_mount(payload, target_found=target is not None)
        self.page.append(target if target is not None else self.page.body, mount)
        self.mount = mount

        mount.run_script(self.script_runner, self._logger)
        reason = "pinned" if mount.pinned else payload.target_selector
        self._logger.info("ui injected", extra=self._log_extra(reason=reason))
        return mount

    def on_mount_click(self, selector: str) -> bool:
        """Click inside the injected UI. Dismiss controls remove the host; tracking stays off."""
        mount = self.mount
        if mount is None or mount.dismissed or not mount.is_close_action(selector):
            return False
        mount.dismissed = True
        self.page.detach(mount.host_id)
        self._logger.info("ui dismissed", extra=self._log_extra())
        return True

    # ---- DOM handlers ----

    def on_element_added(self, element: Element) -> None:
        if not self.active:
            return
        for el in (element, *element.descendants()):
            self.dwell.observe(el)

    def on_intersection(self, element: Element, ratio: float) -> None:
        if not self.active or not element.id:
            return
        self.dwell.on_intersection(element.id, float(ratio), self.env.now)

    def on_visibility_change(self, visible: bool) -> None:
        if not self.active:
            return
        self.dwell.on_visibility(visible, self.env.now)

    def on_scroll(self, scroll_y: float) -> None:
        if not self.active:
            return
        speed = self.scroll.sample(scroll_y, self.env.now)
        if speed is not None and speed > self.batch.scroll_velocity:
            self.batch.scroll_velocity = round(speed, 2)
        depth = self.page.scroll_depth(scroll_y)
        if depth > self.batch.scroll_depth:
            self.batch.scroll_depth = depth

    def on_click(self, element: Element, x: float = 0.0, y: float = 0.0) -> None:
        if not self.active:
            return
        self._cancel_hesitation()
        self._interaction(element, "click")

        selector = selector_for(element)
        if self.rage.record(selector, self.env.now):
            self.batch.rage_clicks += 1

        if (
            element.tag not in ROOT_TAGS
            and not is_interactive(element)
            and len(self.batch.dead_clicks) < self.cfg.max_dead_clicks
        ):
            self.batch.dead_clicks.append(
                DeadClick(selector=selector, x=float(x), y=float(y), timestamp=self._now_ms())
            )

    def on_mouse_move(self, element: Element, x: float = 0.0, y: float = 0.0) -> None:
        if not self.active:
            return
        self._sample_mouse(x, y)

        if element.closest(CTA_SELECTOR) is not None:
            if self._hesitation is None:
                self._hesitation = self.timers.set_timeout(
                    self.cfg.hesitation_s, self._mark_hesitation, label="hesitation"
                )
        else:
            self._cancel_hesitation()

    def _mark_hesitation(self) -> None:
        self.batch.hesitation_event = True

    def _cancel_hesitation(self) -> None:
        if self._hesitation is not None:
            self._hesitation.cancel()
            self._hesitation = None

    def _sample_mouse(self, x: float, y: float) -> None:
        now = self.env.now
        if len(self.batch.mouse_trace) >= self.cfg.max_mouse_samples:
            return
        last = self._last_mouse_sample
        if last is not None and now - last < self.cfg.mouse_sample_interval_s:
            return
        self._last_mouse_sample = now
        self.batch.mouse_trace.append(MouseSample(x=float(x), y=float(y), t=self._now_ms()))

    def on_mouse_over(self, element: Element) -> None:
        if not self.active or element is self._last_hover:
            return
        self._last_hover = element
        if self._hover is not None:
            self._hover.cancel()
        self._hover = self.timers.set_timeout(
            self.cfg.hover_debounce_s, lambda: self._interaction(element, "hover"), label="hover"
        )

    def on_mouse_leave(self, client_y: float) -> None:
        if not self.active:
            return
        if client_y <= 0:
            self.record_event(EXIT_INTENT)

    def on_copy(self, selection: str) -> None:
        if not self.active or not selection:
            return
        self.batch.copy_text.append(selection[: self.cfg.copy_max_chars])

    def on_selection_change(self, text: str) -> None:
        if not self.active:
            return
        if self._selection is not None:
            self._selection.cancel()
        self._selection = self.timers.set_timeout(
            self.cfg.selection_debounce_s, lambda: self._capture_selection(text), label="selection"
        )

    def _capture_selection(self, text: str) -> None:
        t = (text or "").strip()
        if not (self.cfg.selection_min_chars <= len(t) <= self.cfg.selection_max_chars):
            return
        if t not in self.batch.text_selections:
            self.batch.text_selections.append(t)

    def on_input(self, element: Element) -> None:
        if not self.active:
            return
        self._interaction(element, "input")
        stats = self._form_stats(element)
        if stats is not None:
            stats.inputs += 1

    def on_focus(self, element: Element) -> None:
        if not self.active:
            return
        stats = self._form_stats(element)
        if stats is None:
            return
        name = selector_for(element)
        if name not in stats.focused_fields:
            stats.focused_fields.append(name)

    def on_submit(self, form: Element) -> None:
        if not self.active:
            return
        stats = self._form_stats(form)
        if stats is not None:
            stats.submitted = True

    def _form_stats(self, element: Element) -> FormStats | None:
        form = element.closest("form")
        if form is None:
            return None
        key = selector_for(form)
        if key not in self.batch.forms and len(self.batch.forms) >= self.cfg.max_forms:
            return None
        return self.batch.forms.setdefault(key, FormStats())

    def on_performance(self, metrics: Mapping[str, Any]) -> None:
        if not self.active:
            return
        for name, value in metrics.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            self.batch.performance[str(name)] = float(value)

    def on_error(self, message: str, source: str | None = None) -> None:
        if not self.active or len(self.batch.errors) >= self.cfg.max_errors:
            return
        self.batch.errors.append(
            ErrorRecord(
                message=str(message)[: self.cfg.max_error_chars],
                source=source,
                timestamp=self._now_ms(),
            )
        )

    def record_event(self, event_type: str, payload: Mapping[str, Any] | None = None) -> None:
        if not self.active:
            return
        self.batch.events.append(
            CustomEvent(
                type=event_type,
                timestamp=self._now_ms(),
                payload=dict(payload) if payload else None,
            )
        )
