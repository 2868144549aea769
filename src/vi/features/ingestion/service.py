from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Protocol

from vi.core.ids import IdsService, hash_client_address
from vi.core.logging import get_logger
from vi.core.types import CLICK
from vi.features.enrichment.service import EnrichmentQueue
from vi.features.enrichment.types import EnrichmentJob
from vi.features.persistence.service import StandardEvent
from vi.features.router.service import DecisionRouter
from vi.features.scoring.service import ScoringService
from vi.features.sessions.service import SessionsService
from vi.features.sessions.types import Session
from vi.features.sites.service import SiteRegistry

from .types import IngestRequest, IngestResponse, RawLogEntry, RawLogStore


class EventSink(Protocol):
    def emit(self, e: StandardEvent) -> None: ...


class InMemoryRawLogStore:
    def __init__(self) -> None:
        self.entries: list[RawLogEntry] = []

    def append(self, entry: RawLogEntry) -> None:
        self.entries.append(entry)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _client_ts(ms: int | float | None, fallback: datetime) -> datetime:
    if not ms or ms <= 0:
        return fallback
    try:
        return datetime.fromtimestamp(float(ms) / 1000.0, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return fallback


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class IngestionGateway:
    """
    Server entry point for signal batches.

    Per request: authorize -> get/create session -> raw log -> merge ->
    score + route -> save session -> standard events -> response.

    Raw logging and enrichment dispatch are side channels: failures are
    logged and never reach the caller. Validation and access errors do.
    """

    def __init__(
        self,
        *,
        sites: SiteRegistry,
        sessions: SessionsService,
        scoring: ScoringService,
        router: DecisionRouter,
        ids: IdsService,
        run_id: str,
        events: EventSink | None = None,
        raw_logs: RawLogStore | None = None,
        enrichment: EnrichmentQueue | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.sites = sites
        self.sessions = sessions
        self.scoring = scoring
        self.router = router
        self.ids = ids
        self.run_id = run_id
        self.events = events
        self.raw_logs = raw_logs
        self.enrichment = enrichment
        self.clock = clock
        self._logger = get_logger(__name__)

    def site_config(self, site_id: str) -> dict[str, Any]:
        return self.sites.handshake(site_id)

    def ingest_wire(
        self, body: Mapping[str, Any] | str | bytes, *, client_address: str | None = None
    ) -> dict[str, Any]:
        request = IngestRequest.from_wire(body, client_address=client_address)
        return self.ingest(request).to_wire()

    def ingest(self, request: IngestRequest) -> IngestResponse:
        site = self.sites.authorize(request.site_id, request.access_key)
        now = self.clock()

        session, created = self.sessions.get_or_create(
            site_id=site.site_id,
            session_id=request.session_id,
            now=now,
            client_address=request.client_address,
            user_agent=request.user_agent,
        )
        if created:
            self._dispatch_enrichment(request)

        self._append_raw_log(request, session, now)

        batch = request.batch
        self.sessions.merge_batch(session, batch, now=now, url=request.url, referrer=request.referrer)

        result = self.scoring.score(session.intent_score, batch)
        session.intent_score = result.score
        session.intent_category = result.category

        decision = self.router.route(
            site=site,
            batch=batch,
            result=result,
            url=request.url,
            referrer=request.referrer or session.referrer,
            session_id=session.session_id,
        )

        self.sessions.save(session)
        num_events = self._emit_events(request, now)

        self._logger.info(
            "ingest",
            extra={
                "site_id": site.site_id,
                "session_id": session.session_id,
                "score": result.score,
                "category": result.category.value,
                "intent_key": decision.intent_key.value if decision.intent_key else None,
                "num_events": num_events,
            },
        )

        return IngestResponse(
            session_id=session.session_id,
            intent_category=result.category.value,
            current_score=result.score,
            suggested_action=result.suggested_action,
            ui_payload=decision.payload.to_json() if decision.payload is not None else None,
        )

    def _dispatch_enrichment(self, request: IngestRequest) -> None:
        if self.enrichment is None:
            return
        try:
            self.enrichment.publish(
                EnrichmentJob(
                    site_id=request.site_id,
                    session_id=request.session_id,
                    client_address=request.client_address,
                )
            )
        except Exception as e:
            self._logger.warning(
                "enrichment dispatch failed",
                extra={"site_id": request.site_id, "session_id": request.session_id, "error": repr(e)},
            )

    def _append_raw_log(self, request: IngestRequest, session: Session, now: datetime) -> None:
        if self.raw_logs is None:
            return
        try:
            self.raw_logs.append(
                RawLogEntry(
                    log_id=self.ids.next_id("log"),
                    site_id=request.site_id,
                    session_id=request.session_id,
                    received_at=now,
                    ip_hash=session.ip_hash or hash_client_address(request.client_address),
                    raw=dict(request.raw),
                    url=request.url,
                    client_timestamp_ms=request.client_timestamp_ms,
                    user_agent=request.user_agent,
                )
            )
        except Exception as e:
            self._logger.warning(
                "raw log write failed",
                extra={"site_id": request.site_id, "session_id": request.session_id, "error": repr(e)},
            )

    def _emit_events(self, request: IngestRequest, now: datetime) -> int:
        if self.events is None:
            return 0

        rows: list[StandardEvent] = []
        for ev in request.batch.events:
            payload = ev.payload or {}
            page = payload.get("url")
            selector = payload.get("selector")
            rows.append(
                StandardEvent(
                    run_id=self.run_id,
                    event_id=self.ids.next_id("evt"),
                    ts_utc=_client_ts(ev.timestamp, now),
                    site_id=request.site_id,
                    session_id=request.session_id,
                    event_type=ev.type,
                    page_url=page if isinstance(page, str) and page else request.url,
                    selector=selector if isinstance(selector, str) else None,
                    value_num=_as_number(payload.get("value")),
                    payload=dict(ev.payload) if ev.payload else None,
                )
            )

        for selector, stats in request.batch.interactions.items():
            if stats.clicks <= 0:
                continue
            rows.append(
                StandardEvent(
                    run_id=self.run_id,
                    event_id=self.ids.next_id("evt"),
                    ts_utc=_client_ts(stats.last_seen, now),
                    site_id=request.site_id,
                    session_id=request.session_id,
                    event_type=CLICK,
                    page_url=request.url,
                    selector=selector,
                    value_num=float(stats.clicks),
                )
            )

        for row in rows:
            self.events.emit(row)
        return len(rows)
