from __future__ import annotations

from datetime import UTC, datetime
from urllib.parse import parse_qsl, urlsplit

from vi.core.ids import hash_client_address
from vi.core.types import SESSION_END, IntentCategory
from vi.features.signals.types import SignalBatch

from .types import Session, SessionStore
from .useragent import parse_user_agent

NEW_SESSION_SCORE = 40


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utm_params_from_url(url: str | None) -> dict[str, str]:
    if not url:
        return {}
    query = urlsplit(url).query
    return {k: v for k, v in parse_qsl(query) if k.lower().startswith("utm_") and v}


def _batch_urls(batch: SignalBatch, url: str | None) -> list[str]:
    urls: list[str] = []
    if url:
        urls.append(url)
    for e in batch.page_view_events():
        page = (e.payload or {}).get("url")
        if isinstance(page, str) and page:
            urls.append(page)
    return urls


class InMemorySessionStore:
    """
    Hot storage for sessions. Last write wins; no locking.
    """

    def __init__(self) -> None:
        self.sessions: dict[tuple[str, str], Session] = {}

    def get(self, site_id: str, session_id: str) -> Session | None:
        return self.sessions.get((site_id, session_id))

    def save(self, session: Session) -> None:
        self.sessions[(session.site_id, session.session_id)] = session

    def list_active(self, site_id: str, *, limit: int = 100) -> list[Session]:
        active = [s for s in self.sessions.values() if s.site_id == site_id and s.is_active]
        active.sort(key=lambda s: s.last_activity_at, reverse=True)
        return active[:limit]


class SessionsService:
    """
    Session lifecycle on the ingestion side.

    - get_or_create: first sight of (site, session) creates the aggregate
    - merge_batch: folds one signal batch into the aggregate
    """

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    def get_or_create(
        self,
        *,
        site_id: str,
        session_id: str,
        now: datetime,
        client_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[Session, bool]:
        """
        Returns (session, created).

        New sessions start at the neutral score 40 but are labelled Bouncer
        until their first batch has been scored.
        """
        existing = self.store.get(site_id, session_id)
        if existing is not None:
            return existing, False

        now = _ensure_utc(now)
        ua = parse_user_agent(user_agent)
        session = Session(
            site_id=site_id,
            session_id=session_id,
            started_at=now,
            last_activity_at=now,
            ip_hash=hash_client_address(client_address),
            user_agent=user_agent,
            device_type=ua.device_type,
            browser=ua.browser,
            os=ua.os,
            intent_score=NEW_SESSION_SCORE,
            intent_category=IntentCategory.BOUNCER,
        )
        self.store.save(session)
        return session, True

    def merge_batch(
        self,
        session: Session,
        batch: SignalBatch,
        *,
        now: datetime,
        url: str | None = None,
        referrer: str | None = None,
    ) -> Session:
        now = _ensure_utc(now)
        page_url = url or batch.url
        first_batch = session.batch_count == 0

        session.pages_visited.update(_batch_urls(batch, page_url))

        views = len(batch.page_view_events())
        if views == 0 and first_batch and page_url:
            views = 1
        session.total_page_views += views

        session.total_time_spent += batch.total_dwell_seconds()
        session.max_scroll_depth = max(session.max_scroll_depth, int(batch.scroll_depth))

        if session.referrer is None:
            session.referrer = referrer or batch.referrer or None
        if not session.utm_params:
            session.utm_params = utm_params_from_url(page_url)

        session.last_activity_at = now
        session.batch_count += 1

        if batch.has_event(SESSION_END):
            session.ended_at = now
            session.is_active = False

        return session

    def save(self, session: Session) -> None:
        self.store.save(session)

    def live_sessions(self, site_id: str, *, limit: int = 100) -> list[Session]:
        return self.store.list_active(site_id, limit=limit)
