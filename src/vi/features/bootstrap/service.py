from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import simpy

from vi.core.config import EngineConfig
from vi.core.ids import IdsService, deterministic_run_id_from_config
from vi.core.logging import get_logger
from vi.core.rng import RNG
from vi.features.collector.service import SignalCollector
from vi.features.collector.types import HostPage
from vi.features.enrichment.service import EnrichmentQueue, EnrichmentWorker
from vi.features.enrichment.types import AddressResolver
from vi.features.ingestion.service import IngestionGateway
from vi.features.ingestion.transport import GatewayTransport
from vi.features.ingestion.types import IngestionError
from vi.features.persistence.duckdb_adapter import DuckDBAdapter
from vi.features.persistence.repositories import (
    DuckDBRawLogStore,
    DuckDBSessionStore,
    DuckDBSiteStore,
    DuckDBTemplateStore,
)
from vi.features.persistence.service import PersistenceService
from vi.features.router.service import DecisionRouter
from vi.features.router.types import ContextLookup, Template
from vi.features.scoring.service import ScoringService
from vi.features.scoring.types import rules_from_config
from vi.features.sessions.service import SessionsService
from vi.features.sites.service import SiteRegistry
from vi.features.sites.types import AccessDenied, SiteConfig
from vi.features.synthesis.service import UiSynthesisAdapter
from vi.features.synthesis.types import UiGenerator


@dataclass(frozen=True)
class Engine:
    run_id: str
    env: simpy.Environment
    rng: RNG
    ids: IdsService
    persistence: PersistenceService
    sites: SiteRegistry
    sessions: SessionsService
    gateway: IngestionGateway
    raw_logs: DuckDBRawLogStore
    enrichment: EnrichmentWorker | None
    duckdb_path: str

    def close(self) -> None:
        self.persistence.close()


@dataclass(frozen=True)
class ReplayResult:
    run_id: str
    duckdb_path: str
    accepted: int
    rejected: int
    ui_payloads: int
    enriched: int


def build_engine(
    cfg: EngineConfig,
    *,
    env: simpy.Environment | None = None,
    resolver: AddressResolver | None = None,
    generator: UiGenerator | None = None,
    lookup: ContextLookup | None = None,
) -> Engine:
    """
    Wire the server side from config: DuckDB stores, registered sites and
    templates, scoring, routing and the ingestion gateway. Enrichment runs only
    when a resolver is supplied.
    """
    raw: dict[str, Any] = cfg.raw if isinstance(cfg.raw, dict) else {}

    # ----- run identity -----
    run_id = deterministic_run_id_from_config(raw) if cfg.run.run_id == "auto" else cfg.run.run_id
    logger = get_logger("vi", cfg.logging.level)

    env = env or simpy.Environment()
    rng = RNG(cfg.run.seed)
    ids = IdsService(run_id)

    # ----- cold storage -----
    adapter = DuckDBAdapter(path=cfg.storage.duckdb_path, clean_slate=cfg.storage.clean_slate)
    persistence = PersistenceService(
        adapter=adapter,
        every_n_events=cfg.storage.flush.every_n_events,
        or_every_seconds=cfg.storage.flush.or_every_seconds,
    )
    persistence.open()
    persistence.start_periodic_flush(env)

    # ----- sites + templates -----
    sites = SiteRegistry(DuckDBSiteStore(adapter))
    for site_raw in cfg.sites:
        sites.register(SiteConfig.from_mapping(site_raw, default_ui_mode=cfg.gateway.default_ui_mode))

    templates = DuckDBTemplateStore(adapter)
    for tpl_raw in cfg.templates:
        templates.save(Template.from_mapping(tpl_raw))

    # ----- sessions + enrichment -----
    session_store = DuckDBSessionStore(adapter)
    sessions = SessionsService(session_store)

    queue: EnrichmentQueue | None = None
    worker: EnrichmentWorker | None = None
    if resolver is not None:
        queue = EnrichmentQueue(env=env)
        worker = EnrichmentWorker(env=env, queue=queue, sessions=session_store, resolver=resolver)
        worker.start()

    # ----- decision path -----
    router = DecisionRouter(
        templates=templates,
        synthesis=UiSynthesisAdapter(generator),
        lookup=lookup,
        generation_timeout_s=cfg.gateway.generation_timeout_s,
    )

    raw_logs = DuckDBRawLogStore(adapter)
    gateway = IngestionGateway(
        sites=sites,
        sessions=sessions,
        scoring=ScoringService(rules_from_config(cfg.scoring)),
        router=router,
        ids=ids,
        run_id=run_id,
        events=persistence,
        raw_logs=raw_logs,
        enrichment=queue,
    )

    logger.info("engine ready", extra={"feature": "bootstrap", "run_id": run_id})

    return Engine(
        run_id=run_id,
        env=env,
        rng=rng,
        ids=ids,
        persistence=persistence,
        sites=sites,
        sessions=sessions,
        gateway=gateway,
        raw_logs=raw_logs,
        enrichment=worker,
        duckdb_path=cfg.storage.duckdb_path,
    )


def attach_collector(
    engine: Engine,
    page: HostPage,
    *,
    site_id: str,
    access_key: str | None,
    cfg: EngineConfig,
    client_address: str | None = None,
    session_id: str | None = None,
) -> SignalCollector:
    """A collector on the engine's clock, talking to the gateway in-process."""
    transport = GatewayTransport(
        engine.gateway, client_address=client_address, user_agent=page.user_agent
    )
    return SignalCollector(
        env=engine.env,
        page=page,
        transport=transport,
        site_id=site_id,
        access_key=access_key,
        session_id=session_id,
        cfg=cfg.collector,
        rng=engine.rng,
    )


def _replay_line(line: str) -> tuple[Mapping[str, Any] | str, str | None]:
    """
    A replay line is either a wire body, or {"client_address": ..., "body": {...}}.
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError:
        return line, None  # let the gateway reject it
    if isinstance(obj, dict) and isinstance(obj.get("body"), (dict, str)):
        return obj["body"], obj.get("client_address")
    return obj, None


def replay_batches(
    cfg: EngineConfig,
    lines: Iterable[str],
    *,
    spacing_s: float = 1.0,
    resolver: AddressResolver | None = None,
    generator: UiGenerator | None = None,
    lookup: ContextLookup | None = None,
) -> ReplayResult:
    """
    Feed JSONL wire bodies through the gateway, one every spacing_s on the
    SimPy clock, so the enrichment worker and periodic flush interleave.
    Rejected bodies are logged and counted; the replay continues.
    """
    if spacing_s <= 0:
        raise ValueError("spacing_s must be > 0")
    engine = build_engine(cfg, resolver=resolver, generator=generator, lookup=lookup)
    logger = get_logger("vi.replay", cfg.logging.level)
    counts = {"accepted": 0, "rejected": 0, "ui_payloads": 0}

    def feeder(env: simpy.Environment):
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            body, client_address = _replay_line(line)
            try:
                response = engine.gateway.ingest_wire(body, client_address=client_address)
            except (IngestionError, AccessDenied) as e:
                counts["rejected"] += 1
                logger.warning(
                    "replay line rejected",
                    extra={"feature": "replay", "reason": f"line {lineno}", "error": repr(e)},
                )
            else:
                counts["accepted"] += 1
                if response.get("ui_payload"):
                    counts["ui_payloads"] += 1
            yield env.timeout(spacing_s)

    try:
        proc = engine.env.process(feeder(engine.env))
        engine.env.run(until=proc)
        # drain queued enrichment jobs
        engine.env.run(until=engine.env.now + spacing_s)
        engine.persistence.flush(reason="replay_finish")
    finally:
        engine.close()

    return ReplayResult(
        run_id=engine.run_id,
        duckdb_path=engine.duckdb_path,
        accepted=counts["accepted"],
        rejected=counts["rejected"],
        ui_payloads=counts["ui_payloads"],
        enriched=engine.enrichment.processed if engine.enrichment is not None else 0,
    )
