from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class RunConfig:
    run_id: str = "auto"
    seed: int | None = None


@dataclass(frozen=True)
class FlushConfig:
    every_n_events: int = 500
    or_every_seconds: float = 30.0


@dataclass(frozen=True)
class StorageConfig:
    duckdb_path: str
    clean_slate: bool = False
    flush: FlushConfig = FlushConfig()


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class CollectorConfig:
    """
    Page-side tuning. All durations are seconds on the page clock.
    """

    batch_interval_s: float = 20.0
    start_up_delay_s: float = 1.0
    intersection_threshold: float = 0.1
    scroll_sample_interval_s: float = 0.1
    rage_click_window_s: float = 1.0
    rage_click_threshold: int = 4
    hesitation_s: float = 2.0
    hover_debounce_s: float = 0.2
    selection_debounce_s: float = 1.0
    copy_max_chars: int = 100
    selection_min_chars: int = 5
    selection_max_chars: int = 200
    max_dead_clicks: int = 10
    max_errors: int = 5
    max_error_chars: int = 200
    max_mouse_samples: int = 50
    mouse_sample_interval_s: float = 0.1
    max_forms: int = 10


@dataclass(frozen=True)
class GatewayConfig:
    generation_timeout_s: float = 5.0
    default_ui_mode: str = "on_demand"


@dataclass(frozen=True)
class EngineConfig:
    storage: StorageConfig
    logging: LoggingConfig
    run: RunConfig = RunConfig()
    collector: CollectorConfig = CollectorConfig()
    gateway: GatewayConfig = GatewayConfig()
    scoring: dict[str, Any] = field(default_factory=dict)
    sites: list[dict[str, Any]] = field(default_factory=list)
    templates: list[dict[str, Any]] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)  # original parsed YAML


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a mapping.")
    return value


def _list_section(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ValueError(f"Config section '{key}' must be a list of mappings.")
    return [dict(v) for v in value]


def _collector_config(raw: dict[str, Any]) -> CollectorConfig:
    known = CollectorConfig.__dataclass_fields__
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ValueError(f"Unknown collector settings: {unknown}")

    kwargs: dict[str, Any] = {}
    for name, value in raw.items():
        default = getattr(CollectorConfig, name)
        kwargs[name] = int(value) if isinstance(default, int) else float(value)
    return CollectorConfig(**kwargs)


def parse_config(data: dict[str, Any]) -> EngineConfig:
    for key in ["storage", "logging"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    storage = _section(data, "storage")
    logging_cfg = _section(data, "logging")
    flush = _section(storage, "flush")
    gateway = _section(data, "gateway")
    run = _section(data, "run")

    storage_cfg = StorageConfig(
        duckdb_path=str(storage["duckdb_path"]),
        clean_slate=bool(storage.get("clean_slate", False)),
        flush=FlushConfig(
            every_n_events=int(flush.get("every_n_events", FlushConfig.every_n_events)),
            or_every_seconds=float(flush.get("or_every_seconds", FlushConfig.or_every_seconds)),
        ),
    )

    log_cfg = LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper())

    gateway_cfg = GatewayConfig(
        generation_timeout_s=float(
            gateway.get("generation_timeout_s", GatewayConfig.generation_timeout_s)
        ),
        default_ui_mode=str(gateway.get("default_ui_mode", GatewayConfig.default_ui_mode)),
    )
    if gateway_cfg.generation_timeout_s <= 0:
        raise ValueError("gateway.generation_timeout_s must be > 0")

    seed = run.get("seed")
    run_cfg = RunConfig(
        run_id=str(run.get("run_id", RunConfig.run_id)),
        seed=int(seed) if seed is not None else None,
    )

    return EngineConfig(
        storage=storage_cfg,
        logging=log_cfg,
        run=run_cfg,
        collector=_collector_config(_section(data, "collector")),
        gateway=gateway_cfg,
        scoring=_section(data, "scoring"),
        sites=_list_section(data, "sites"),
        templates=_list_section(data, "templates"),
        raw=data,
    )


def load_config(path: str | Path) -> EngineConfig:
    data = load_yaml(path)
    return parse_config(data)
