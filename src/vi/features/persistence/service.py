from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from vi.core.logging import get_logger

from .duckdb_adapter import DuckDBAdapter


def to_db_ts(dt: datetime | None) -> datetime | None:
    """Naive UTC for TIMESTAMP columns."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def from_db_ts(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


@dataclass(frozen=True)
class StandardEvent:
    """
    One analytics row: a custom event from the page, or a synthetic click
    derived from the interaction map.
    """

    run_id: str
    event_id: str
    ts_utc: datetime

    site_id: str
    session_id: str
    event_type: str

    page_url: str | None = None
    selector: str | None = None
    value_num: float | None = None
    payload: dict[str, Any] | None = None


class PersistenceService:
    """
    Buffered event sink + flush policy.
    - Hot: buffer in memory
    - Cold: DuckDB
    """

    def __init__(
        self,
        *,
        adapter: DuckDBAdapter,
        every_n_events: int,
        or_every_seconds: float,
    ) -> None:
        self.adapter = adapter
        self.every_n_events = int(every_n_events)
        self.or_every_seconds = float(or_every_seconds)

        self._buf: list[StandardEvent] = []
        self._logger = get_logger(__name__)

        self._is_open = False
        self._periodic_proc_started = False

    def open(self) -> None:
        if self._is_open:
            return
        self.adapter.open()
        self._is_open = True

    def emit(self, e: StandardEvent) -> None:
        if not self._is_open:
            raise RuntimeError("PersistenceService not open. Call open() during bootstrap.")

        self._buf.append(e)

        if self.every_n_events > 0 and len(self._buf) >= self.every_n_events:
            self.flush(reason="count")

    def pending(self) -> int:
        return len(self._buf)

    def flush(self, *, reason: str) -> None:
        if not self._buf:
            return

        rows = [self._event_to_row(e) for e in self._buf]
        self._buf.clear()

        result = self.adapter.write_events(rows)

        self._logger.info(
            "flush",
            extra={
                "feature": "persistence",
                "reason": reason,
                "num_events": result.num_events,
                "duration_ms": result.duration_ms,
            },
        )

    def close(self) -> None:
        if not self._is_open:
            return
        self.flush(reason="shutdown")
        self.adapter.close()
        self._is_open = False

    def start_periodic_flush(self, env) -> None:
        """
        Start a SimPy process that flushes every `or_every_seconds`.
        Call once after env is created.
        """
        if self._periodic_proc_started:
            return
        self._periodic_proc_started = True
        env.process(self._periodic_flush_proc(env))

    def _periodic_flush_proc(self, env):
        while self._is_open:
            yield env.timeout(self.or_every_seconds)
            if self._is_open:
                self.flush(reason="timer")

    @staticmethod
    def _event_to_row(e: StandardEvent) -> tuple:
        payload_json = (
            json.dumps(e.payload, sort_keys=True, separators=(",", ":"), default=str)
            if e.payload
            else None
        )
        return (
            e.run_id,
            e.event_id,
            to_db_ts(e.ts_utc),
            e.site_id,
            e.session_id,
            e.event_type,
            e.page_url,
            e.selector,
            e.value_num,
            payload_json,
        )
