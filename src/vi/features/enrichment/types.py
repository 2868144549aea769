from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from vi.features.sessions.types import GeoInfo, NetworkFlags


@dataclass(frozen=True, slots=True)
class EnrichmentJob:
    """
    Queued on first sight of a session. The raw client address lives only in
    this in-memory job; it is never persisted.
    """

    site_id: str
    session_id: str
    client_address: str | None


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    geo: GeoInfo | None = None
    organization: str | None = None
    flags: NetworkFlags | None = None


class AddressResolver(Protocol):
    """IP-to-organisation/geo lookup. Returns None when nothing is known."""

    def resolve(self, address: str) -> EnrichmentResult | None: ...
