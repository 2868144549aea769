from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from vi.features.signals.schema import MAX_EPOCH_MS, SignalValidationError, parse_signal_bundle
from vi.features.signals.types import SignalBatch


class IngestionError(ValueError):
    """Malformed ingestion body."""


def _required_str(body: Mapping[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise IngestionError(f"'{key}' is required")
    return value.strip()


def _optional_str(body: Mapping[str, Any], key: str) -> str | None:
    value = body.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise IngestionError(f"'{key}' must be a string")
    return value


@dataclass(frozen=True)
class IngestRequest:
    site_id: str
    session_id: str
    batch: SignalBatch
    access_key: str | None = None
    url: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    client_timestamp_ms: int | None = None
    client_address: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)  # body as received

    @classmethod
    def from_wire(
        cls, body: Mapping[str, Any] | str | bytes, *, client_address: str | None = None
    ) -> IngestRequest:
        if isinstance(body, (str, bytes)):
            try:
                body = json.loads(body)
            except json.JSONDecodeError as e:
                raise IngestionError("body is not valid JSON") from e
        if not isinstance(body, Mapping):
            raise IngestionError("body must be a JSON object")

        signals = body.get("signals")
        if isinstance(signals, str):
            try:
                signals = json.loads(signals)
            except json.JSONDecodeError as e:
                raise IngestionError("'signals' is not valid JSON") from e
        if not isinstance(signals, Mapping):
            raise IngestionError("'signals' must be an object")

        try:
            batch = parse_signal_bundle(signals)
        except SignalValidationError as e:
            raise IngestionError(str(e)) from e

        ts = body.get("timestamp")
        if ts is not None and (
            isinstance(ts, bool)
            or not isinstance(ts, (int, float))
            or not 0 <= ts <= MAX_EPOCH_MS
        ):
            raise IngestionError("'timestamp' must be an epoch time in ms")

        access_key = body.get("access_key")
        if access_key is not None and not isinstance(access_key, str):
            raise IngestionError("'access_key' must be a string")

        return cls(
            site_id=_required_str(body, "site_id"),
            session_id=_required_str(body, "session_id"),
            batch=batch,
            access_key=access_key,
            url=_optional_str(body, "url") or batch.url,
            referrer=_optional_str(body, "referrer") or batch.referrer,
            user_agent=_optional_str(body, "user_agent"),
            client_timestamp_ms=int(ts) if ts is not None else None,
            client_address=client_address,
            raw=dict(body),
        )


@dataclass(frozen=True)
class IngestResponse:
    session_id: str
    intent_category: str
    current_score: int
    suggested_action: str | None = None
    ui_payload: str | None = None  # serialized AdaptivePayload

    def to_wire(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "intent_category": self.intent_category,
            "current_score": self.current_score,
            "suggested_action": self.suggested_action,
            "ui_payload": self.ui_payload,
        }


@dataclass(frozen=True)
class RawLogEntry:
    log_id: str
    site_id: str
    session_id: str
    received_at: datetime
    ip_hash: str
    raw: dict[str, Any]
    url: str | None = None
    client_timestamp_ms: int | None = None
    user_agent: str | None = None


class RawLogStore(Protocol):
    def append(self, entry: RawLogEntry) -> None: ...
