from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace

import simpy

from vi.core.ids import hash_client_address
from vi.core.logging import get_logger
from vi.features.sessions.types import GeoInfo, Session, SessionStore

from .types import AddressResolver, EnrichmentJob, EnrichmentResult


@dataclass(slots=True)
class EnrichmentQueue:
    env: simpy.Environment
    capacity: int | None = None

    _store: simpy.Store = field(init=False, repr=False)

    def __post_init__(self) -> None:
        # SimPy does NOT accept None for capacity; omit to get infinite capacity.
        if self.capacity is None:
            self._store = simpy.Store(self.env)
        else:
            self._store = simpy.Store(self.env, capacity=self.capacity)

    def publish(self, job: EnrichmentJob) -> simpy.events.Event:
        return self._store.put(job)

    def get(self) -> simpy.events.Event:
        return self._store.get()

    def size(self) -> int:
        return len(self._store.items)


def _merge_geo(current: GeoInfo | None, update: GeoInfo | None) -> GeoInfo | None:
    if update is None:
        return current
    if current is None:
        return update
    changes = {
        f.name: getattr(update, f.name) for f in fields(GeoInfo) if getattr(update, f.name) is not None
    }
    return replace(current, **changes)


def apply_enrichment(session: Session, result: EnrichmentResult) -> Session:
    session.geo = _merge_geo(session.geo, result.geo)
    if result.flags is not None:
        session.flags = result.flags
    if result.organization:
        session.organization_name = result.organization
    return session


@dataclass(slots=True)
class EnrichmentWorker:
    """
    Consumes EnrichmentJobs and writes resolver results onto stored sessions.

    Results are cached per (hashed) address. Resolver failures are logged and
    dropped; nothing here ever reaches the ingestion caller.
    """

    env: simpy.Environment
    queue: EnrichmentQueue
    sessions: SessionStore
    resolver: AddressResolver

    cache: dict[str, EnrichmentResult] = field(default_factory=dict)
    processed: int = 0

    _logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._logger = get_logger(__name__)

    def start(self) -> simpy.events.Process:
        return self.env.process(self._run_loop())

    def _resolve(self, address: str) -> EnrichmentResult | None:
        key = hash_client_address(address)
        if key in self.cache:
            return self.cache[key]
        result = self.resolver.resolve(address)
        if result is not None:
            self.cache[key] = result
        return result

    def process_one(self, job: EnrichmentJob) -> bool:
        extra = {"feature": "enrichment", "site_id": job.site_id, "session_id": job.session_id}
        if not job.client_address:
            return False

        try:
            result = self._resolve(job.client_address)
        except Exception as e:
            self._logger.warning("address resolver failed", extra={**extra, "error": repr(e)})
            return False

        if result is None:
            self._logger.info("no enrichment data", extra=extra)
            return False

        session = self.sessions.get(job.site_id, job.session_id)
        if session is None:
            self._logger.warning("session not found for enrichment", extra=extra)
            return False

        self.sessions.save(apply_enrichment(session, result))
        self.processed += 1
        return True

    def _run_loop(self):
        while True:
            job: EnrichmentJob = yield self.queue.get()
            self.process_one(job)
