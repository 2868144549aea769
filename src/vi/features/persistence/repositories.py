from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any

from vi.core.ids import canonical_json
from vi.core.types import IntentCategory, UiMode
from vi.features.ingestion.types import RawLogEntry
from vi.features.router.types import Template
from vi.features.sessions.types import GeoInfo, NetworkFlags, Session
from vi.features.sites.types import SiteConfig, SiteSettings

from .duckdb_adapter import DuckDBAdapter
from .schema import (
    RAW_LOGS_TABLE_NAME,
    SESSIONS_TABLE_NAME,
    SITES_TABLE_NAME,
    TEMPLATES_TABLE_NAME,
)
from .service import from_db_ts, to_db_ts


def _dumps(obj: Any) -> str | None:
    if obj is None:
        return None
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _loads(text: str | None, default: Any) -> Any:
    if not text:
        return default
    return json.loads(text)


_SESSION_COLUMNS = (
    "site_id",
    "session_id",
    "ip_hash",
    "user_agent",
    "device_type",
    "browser",
    "os",
    "started_at",
    "last_activity_at",
    "ended_at",
    "total_page_views",
    "total_time_spent",
    "max_scroll_depth",
    "pages_visited_json",
    "referrer",
    "utm_params_json",
    "intent_score",
    "intent_category",
    "is_active",
    "batch_count",
    "organization_name",
    "geo_json",
    "flags_json",
)


class DuckDBSessionStore:
    """
    Session aggregates keyed by (site_id, session_id). save() replaces the
    whole row, so concurrent writers resolve last-write-wins.
    """

    def __init__(self, adapter: DuckDBAdapter) -> None:
        self.adapter = adapter

    def get(self, site_id: str, session_id: str) -> Session | None:
        row = self.adapter.fetchone(
            f"SELECT {', '.join(_SESSION_COLUMNS)} FROM {SESSIONS_TABLE_NAME} "
            "WHERE site_id = ? AND session_id = ?",
            [site_id, session_id],
        )
        return self._row_to_session(row) if row else None

    def save(self, session: Session) -> None:
        placeholders = ", ".join("?" for _ in _SESSION_COLUMNS)
        self.adapter.execute(
            f"INSERT OR REPLACE INTO {SESSIONS_TABLE_NAME} ({', '.join(_SESSION_COLUMNS)}) "
            f"VALUES ({placeholders})",
            self._session_to_row(session),
        )

    def list_active(self, site_id: str, *, limit: int = 100) -> list[Session]:
        rows = self.adapter.fetchall(
            f"SELECT {', '.join(_SESSION_COLUMNS)} FROM {SESSIONS_TABLE_NAME} "
            "WHERE site_id = ? AND is_active ORDER BY last_activity_at DESC LIMIT ?",
            [site_id, int(limit)],
        )
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _session_to_row(s: Session) -> tuple:
        return (
            s.site_id,
            s.session_id,
            s.ip_hash,
            s.user_agent,
            s.device_type,
            s.browser,
            s.os,
            to_db_ts(s.started_at),
            to_db_ts(s.last_activity_at),
            to_db_ts(s.ended_at),
            int(s.total_page_views),
            float(s.total_time_spent),
            int(s.max_scroll_depth),
            _dumps(sorted(s.pages_visited)),
            s.referrer,
            _dumps(s.utm_params),
            int(s.intent_score),
            s.intent_category.value,
            bool(s.is_active),
            int(s.batch_count),
            s.organization_name,
            _dumps(asdict(s.geo)) if s.geo is not None else None,
            _dumps(asdict(s.flags)) if s.flags is not None else None,
        )

    @staticmethod
    def _row_to_session(row: tuple) -> Session:
        r = dict(zip(_SESSION_COLUMNS, row, strict=True))
        geo = _loads(r["geo_json"], None)
        flags = _loads(r["flags_json"], None)
        return Session(
            site_id=r["site_id"],
            session_id=r["session_id"],
            started_at=from_db_ts(r["started_at"]),
            last_activity_at=from_db_ts(r["last_activity_at"]),
            ip_hash=r["ip_hash"],
            user_agent=r["user_agent"],
            device_type=r["device_type"],
            browser=r["browser"],
            os=r["os"],
            ended_at=from_db_ts(r["ended_at"]),
            total_page_views=int(r["total_page_views"]),
            total_time_spent=float(r["total_time_spent"]),
            max_scroll_depth=int(r["max_scroll_depth"]),
            pages_visited=set(_loads(r["pages_visited_json"], [])),
            referrer=r["referrer"],
            utm_params=dict(_loads(r["utm_params_json"], {})),
            intent_score=int(r["intent_score"]),
            intent_category=IntentCategory(r["intent_category"]),
            is_active=bool(r["is_active"]),
            batch_count=int(r["batch_count"]),
            organization_name=r["organization_name"],
            geo=GeoInfo(**geo) if geo is not None else None,
            flags=NetworkFlags(**flags) if flags is not None else None,
        )


class DuckDBRawLogStore:
    """Write-once audit copies of inbound bundles."""

    def __init__(self, adapter: DuckDBAdapter) -> None:
        self.adapter = adapter

    def append(self, entry: RawLogEntry) -> None:
        self.adapter.execute(
            f"""
            INSERT INTO {RAW_LOGS_TABLE_NAME} (
                log_id, site_id, session_id, url,
                received_at, client_timestamp_ms,
                ip_hash, user_agent, raw_json
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                entry.log_id,
                entry.site_id,
                entry.session_id,
                entry.url,
                to_db_ts(entry.received_at),
                entry.client_timestamp_ms,
                entry.ip_hash,
                entry.user_agent,
                canonical_json(entry.raw),
            ],
        )

    def count(self, *, site_id: str | None = None) -> int:
        if site_id is None:
            row = self.adapter.fetchone(f"SELECT COUNT(*) FROM {RAW_LOGS_TABLE_NAME}")
        else:
            row = self.adapter.fetchone(
                f"SELECT COUNT(*) FROM {RAW_LOGS_TABLE_NAME} WHERE site_id = ?", [site_id]
            )
        return int(row[0]) if row else 0


class DuckDBSiteStore:
    def __init__(self, adapter: DuckDBAdapter) -> None:
        self.adapter = adapter

    def get(self, site_id: str) -> SiteConfig | None:
        row = self.adapter.fetchone(
            f"SELECT site_id, access_key, name, is_active, allowed_domains_json, settings_json "
            f"FROM {SITES_TABLE_NAME} WHERE site_id = ?",
            [site_id],
        )
        if row is None:
            return None
        site_id_, access_key, name, is_active, domains_json, settings_json = row
        settings = _loads(settings_json, {})
        return SiteConfig(
            site_id=site_id_,
            access_key=access_key,
            name=name,
            is_active=bool(is_active),
            allowed_domains=tuple(_loads(domains_json, [])),
            settings=SiteSettings(
                start_up_delay_ms=int(settings.get("start_up_delay_ms", SiteSettings.start_up_delay_ms)),
                ui_mode=UiMode.parse(settings.get("ui_mode") or UiMode.ON_DEMAND.value),
                style_description=settings.get("style_description") or SiteSettings.style_description,
                design_tokens=dict(settings.get("design_tokens") or {}),
            ),
        )

    def save(self, site: SiteConfig) -> None:
        self.adapter.execute(
            f"INSERT OR REPLACE INTO {SITES_TABLE_NAME} "
            "(site_id, access_key, name, is_active, allowed_domains_json, settings_json) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                site.site_id,
                site.access_key,
                site.name,
                site.is_active,
                _dumps(list(site.allowed_domains)),
                _dumps(site.settings.to_wire()),
            ],
        )


class DuckDBTemplateStore:
    _COLUMNS = (
        "site_id",
        "intent_key",
        "prompt",
        "description",
        "html",
        "css",
        "js",
        "target_selector",
        "is_active",
    )

    def __init__(self, adapter: DuckDBAdapter) -> None:
        self.adapter = adapter

    def find_active(self, site_id: str, intent_key: str) -> Template | None:
        row = self.adapter.fetchone(
            f"SELECT {', '.join(self._COLUMNS)} FROM {TEMPLATES_TABLE_NAME} "
            "WHERE site_id = ? AND intent_key = ? AND is_active",
            [site_id, intent_key],
        )
        if row is None:
            return None
        r = dict(zip(self._COLUMNS, row, strict=True))
        return Template(
            site_id=r["site_id"],
            intent_key=r["intent_key"],
            prompt=r["prompt"] or "",
            description=r["description"],
            html=r["html"] or "",
            css=r["css"] or "",
            js=r["js"] or "",
            target_selector=r["target_selector"] or "body",
            is_active=bool(r["is_active"]),
        )

    def save(self, template: Template) -> None:
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        self.adapter.execute(
            f"INSERT OR REPLACE INTO {TEMPLATES_TABLE_NAME} ({', '.join(self._COLUMNS)}) "
            f"VALUES ({placeholders})",
            [getattr(template, c) for c in self._COLUMNS],
        )
