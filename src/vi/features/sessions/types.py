from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from vi.core.types import IntentCategory


@dataclass(slots=True)
class GeoInfo:
    country: str | None = None
    region: str | None = None
    city: str | None = None
    lat: float | None = None
    lng: float | None = None
    timezone: str | None = None


@dataclass(slots=True)
class NetworkFlags:
    is_vpn: bool = False
    is_mobile: bool = False
    is_data_center: bool = False
    is_proxy: bool = False


@dataclass
class Session:
    """
    Server-side aggregate for one visit, keyed by (site_id, session_id).

    No personal identity: the client address is only kept as a SHA-256 hash.
    """

    site_id: str
    session_id: str
    started_at: datetime
    last_activity_at: datetime

    ip_hash: str | None = None
    user_agent: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None

    ended_at: datetime | None = None
    total_page_views: int = 0
    total_time_spent: float = 0.0  # seconds
    max_scroll_depth: int = 0
    pages_visited: set[str] = field(default_factory=set)
    referrer: str | None = None
    utm_params: dict[str, str] = field(default_factory=dict)

    intent_score: int = 0
    intent_category: IntentCategory = IntentCategory.BOUNCER
    is_active: bool = True
    batch_count: int = 0

    # filled in later by enrichment
    organization_name: str | None = None
    geo: GeoInfo | None = None
    flags: NetworkFlags | None = None


class SessionStore(Protocol):
    def get(self, site_id: str, session_id: str) -> Session | None: ...

    def save(self, session: Session) -> None: ...

    def list_active(self, site_id: str, *, limit: int = 100) -> list[Session]: ...
