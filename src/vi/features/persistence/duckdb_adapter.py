from __future__ import annotations

import os
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import duckdb

from .schema import EVENTS_TABLE_NAME, create_schema


@dataclass(frozen=True)
class DuckDBWriteResult:
    num_events: int
    duration_ms: float


class DuckDBAdapter:
    """
    DuckDB persistence adapter. Owns the connection and schema.
    """

    def __init__(self, path: str, *, clean_slate: bool) -> None:
        self.path = path
        self.clean_slate = clean_slate
        self._conn: duckdb.DuckDBPyConnection | None = None

    def open(self) -> None:
        if self._conn is not None:
            return
        if self.path != ":memory:":
            if self.clean_slate and os.path.exists(self.path):
                os.remove(self.path)

            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)

        self._conn = duckdb.connect(self.path)
        create_schema(self._conn)

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("DuckDBAdapter not opened. Call open() first.")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> duckdb.DuckDBPyConnection:
        return self.conn.execute(sql, list(params) if params is not None else [])

    def fetchone(self, sql: str, params: Sequence[Any] | None = None) -> tuple | None:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple]:
        return self.execute(sql, params).fetchall()

    def write_events(self, rows: Sequence[tuple]) -> DuckDBWriteResult:
        """
        Writes a batch of rows matching the events schema.
        Returns count and duration.
        """
        if not rows:
            return DuckDBWriteResult(num_events=0, duration_ms=0.0)

        t0 = time.perf_counter()

        self.conn.executemany(
            f"""
            INSERT INTO {EVENTS_TABLE_NAME} (
                run_id, event_id,
                ts_utc,
                site_id, session_id,
                event_type,
                page_url, selector,
                value_num,
                payload_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
        )

        dt_ms = (time.perf_counter() - t0) * 1000.0
        return DuckDBWriteResult(num_events=len(rows), duration_ms=dt_ms)

    def count_events(self, *, site_id: str | None = None, session_id: str | None = None) -> int:
        """
        Convenience method for sanity checks/tests.
        """
        sql = f"SELECT COUNT(*) FROM {EVENTS_TABLE_NAME} WHERE 1 = 1"
        params: list[Any] = []
        if site_id is not None:
            sql += " AND site_id = ?"
            params.append(site_id)
        if session_id is not None:
            sql += " AND session_id = ?"
            params.append(session_id)
        res = self.fetchone(sql, params)
        return int(res[0]) if res else 0
