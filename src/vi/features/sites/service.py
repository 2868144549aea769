from __future__ import annotations

import hmac
from collections.abc import Iterable
from typing import Any

from vi.core.logging import get_logger

from .types import AccessDenied, SiteConfig, SiteStore


class InMemorySiteStore:
    def __init__(self, sites: Iterable[SiteConfig] = ()) -> None:
        self.sites: dict[str, SiteConfig] = {s.site_id: s for s in sites}

    def get(self, site_id: str) -> SiteConfig | None:
        return self.sites.get(site_id)

    def save(self, site: SiteConfig) -> None:
        self.sites[site.site_id] = site


class SiteRegistry:
    """
    Site lookup for the gateway: access-key checks and the collector handshake.
    """

    def __init__(self, store: SiteStore) -> None:
        self.store = store
        self._logger = get_logger(__name__)

    def register(self, site: SiteConfig) -> None:
        self.store.save(site)

    def get(self, site_id: str) -> SiteConfig:
        site = self.store.get(site_id)
        if site is None:
            raise AccessDenied(f"Unknown site: {site_id!r}")
        return site

    def authorize(self, site_id: str, access_key: str | None) -> SiteConfig:
        site = self.store.get(site_id)
        if site is None:
            self._logger.warning("access denied", extra={"site_id": site_id, "reason": "unknown_site"})
            raise AccessDenied(f"Unknown site: {site_id!r}")

        if not access_key or not hmac.compare_digest(site.access_key, access_key):
            self._logger.warning("access denied", extra={"site_id": site_id, "reason": "bad_key"})
            raise AccessDenied(f"Invalid access key for site {site_id!r}")

        if not site.is_active:
            self._logger.warning("access denied", extra={"site_id": site_id, "reason": "inactive"})
            raise AccessDenied(f"Site {site_id!r} is not active")

        return site

    def handshake(self, site_id: str) -> dict[str, Any]:
        return self.get(site_id).to_handshake()
