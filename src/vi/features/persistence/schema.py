from __future__ import annotations

EVENTS_TABLE_NAME = "events"
SESSIONS_TABLE_NAME = "sessions"
RAW_LOGS_TABLE_NAME = "raw_logs"
SITES_TABLE_NAME = "sites"
TEMPLATES_TABLE_NAME = "intent_templates"

# Timestamps are naive UTC. List/map columns hold JSON text.

EVENTS_DDL = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_TABLE_NAME} (
    run_id TEXT NOT NULL,
    event_id TEXT NOT NULL,

    ts_utc TIMESTAMP NOT NULL,

    site_id TEXT NOT NULL,
    session_id TEXT NOT NULL,

    event_type TEXT NOT NULL,

    page_url TEXT,
    selector TEXT,

    value_num DOUBLE,

    payload_json TEXT
);
"""

SESSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE_NAME} (
    site_id TEXT NOT NULL,
    session_id TEXT NOT NULL,

    ip_hash TEXT,
    user_agent TEXT,
    device_type TEXT,
    browser TEXT,
    os TEXT,

    started_at TIMESTAMP NOT NULL,
    last_activity_at TIMESTAMP NOT NULL,
    ended_at TIMESTAMP,

    total_page_views INTEGER NOT NULL,
    total_time_spent DOUBLE NOT NULL,
    max_scroll_depth INTEGER NOT NULL,
    pages_visited_json TEXT,
    referrer TEXT,
    utm_params_json TEXT,

    intent_score INTEGER NOT NULL,
    intent_category TEXT NOT NULL,
    is_active BOOLEAN NOT NULL,
    batch_count INTEGER NOT NULL,

    organization_name TEXT,
    geo_json TEXT,
    flags_json TEXT,

    PRIMARY KEY (site_id, session_id)
);
"""

RAW_LOGS_DDL = f"""
CREATE TABLE IF NOT EXISTS {RAW_LOGS_TABLE_NAME} (
    log_id TEXT NOT NULL,
    site_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    url TEXT,
    received_at TIMESTAMP NOT NULL,
    client_timestamp_ms BIGINT,
    ip_hash TEXT NOT NULL,
    user_agent TEXT,
    raw_json TEXT NOT NULL
);
"""

SITES_DDL = f"""
CREATE TABLE IF NOT EXISTS {SITES_TABLE_NAME} (
    site_id TEXT PRIMARY KEY,
    access_key TEXT NOT NULL,
    name TEXT,
    is_active BOOLEAN NOT NULL,
    allowed_domains_json TEXT,
    settings_json TEXT
);
"""

TEMPLATES_DDL = f"""
CREATE TABLE IF NOT EXISTS {TEMPLATES_TABLE_NAME} (
    site_id TEXT NOT NULL,
    intent_key TEXT NOT NULL,
    prompt TEXT,
    description TEXT,
    html TEXT,
    css TEXT,
    js TEXT,
    target_selector TEXT,
    is_active BOOLEAN NOT NULL,
    PRIMARY KEY (site_id, intent_key)
);
"""

TABLES_DDL = [EVENTS_DDL, SESSIONS_DDL, RAW_LOGS_DDL, SITES_DDL, TEMPLATES_DDL]

INDEXES = [
    f"CREATE INDEX IF NOT EXISTS idx_events_site_session ON {EVENTS_TABLE_NAME}(site_id, session_id);",
    f"CREATE INDEX IF NOT EXISTS idx_events_event_type ON {EVENTS_TABLE_NAME}(event_type);",
    f"CREATE INDEX IF NOT EXISTS idx_events_ts_utc ON {EVENTS_TABLE_NAME}(ts_utc);",
    f"CREATE INDEX IF NOT EXISTS idx_raw_logs_site_ts ON {RAW_LOGS_TABLE_NAME}(site_id, received_at);",
    f"CREATE INDEX IF NOT EXISTS idx_raw_logs_session ON {RAW_LOGS_TABLE_NAME}(session_id);",
]


def create_schema(conn) -> None:
    """
    Create tables/indexes. No migrations. Safe to call on every open.
    """
    for ddl in TABLES_DDL:
        conn.execute(ddl)
    for ddl in INDEXES:
        conn.execute(ddl)
