from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .service import IngestionGateway


class GatewayTransport:
    """
    In-process transport for a collector: handshake and batch sends go straight
    to the gateway. The user agent is stamped onto bodies that lack one.
    """

    def __init__(
        self,
        gateway: IngestionGateway,
        *,
        client_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.client_address = client_address
        self.user_agent = user_agent
        self.sent: int = 0

    def fetch_config(self, site_id: str) -> Mapping[str, Any]:
        return self.gateway.site_config(site_id)

    def send(self, body: Mapping[str, Any]) -> Mapping[str, Any] | None:
        wire = dict(body)
        if self.user_agent and not wire.get("user_agent"):
            wire["user_agent"] = self.user_agent
        self.sent += 1
        return self.gateway.ingest_wire(wire, client_address=self.client_address)
