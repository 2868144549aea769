from __future__ import annotations

from datetime import UTC, datetime

import simpy

from vi.features.enrichment.service import EnrichmentQueue, EnrichmentWorker
from vi.features.enrichment.types import EnrichmentJob, EnrichmentResult
from vi.features.sessions.service import InMemorySessionStore, SessionsService
from vi.features.sessions.types import GeoInfo, NetworkFlags

T0 = datetime(2026, 1, 1, tzinfo=UTC)


class CountingResolver:
    def __init__(self, result: EnrichmentResult | None) -> None:
        self.result = result
        self.calls: list[str] = []

    def resolve(self, address: str) -> EnrichmentResult | None:
        self.calls.append(address)
        return self.result


def _setup(resolver):
    env = simpy.Environment()
    store = InMemorySessionStore()
    sessions = SessionsService(store)
    queue = EnrichmentQueue(env=env)
    worker = EnrichmentWorker(env=env, queue=queue, sessions=store, resolver=resolver)
    worker.start()
    return env, sessions, queue, worker


def test_worker_applies_result_and_caches_per_address():
    resolver = CountingResolver(
        EnrichmentResult(
            geo=GeoInfo(country="DE", city="Berlin"),
            organization="Acme GmbH",
            flags=NetworkFlags(is_data_center=True),
        )
    )
    env, sessions, queue, worker = _setup(resolver)
    a, _ = sessions.get_or_create(site_id="s", session_id="a", now=T0, client_address="198.51.100.1")
    b, _ = sessions.get_or_create(site_id="s", session_id="b", now=T0, client_address="198.51.100.1")

    queue.publish(EnrichmentJob(site_id="s", session_id="a", client_address="198.51.100.1"))
    queue.publish(EnrichmentJob(site_id="s", session_id="b", client_address="198.51.100.1"))
    assert queue.size() == 2

    env.run(until=1)

    assert queue.size() == 0
    assert worker.processed == 2
    assert resolver.calls == ["198.51.100.1"]
    assert a.organization_name == "Acme GmbH"
    assert a.geo == GeoInfo(country="DE", city="Berlin")
    assert b.flags == NetworkFlags(is_data_center=True)


def test_geo_update_keeps_known_fields():
    resolver = CountingResolver(EnrichmentResult(geo=GeoInfo(city="Paris")))
    env, sessions, queue, worker = _setup(resolver)
    s, _ = sessions.get_or_create(site_id="s", session_id="a", now=T0)
    s.geo = GeoInfo(country="FR", timezone="Europe/Paris")

    assert worker.process_one(EnrichmentJob(site_id="s", session_id="a", client_address="192.0.2.1"))

    assert s.geo == GeoInfo(country="FR", city="Paris", timezone="Europe/Paris")


def test_resolver_failure_is_swallowed_and_worker_keeps_running():
    class Flaky:
        def __init__(self) -> None:
            self.n = 0

        def resolve(self, address: str):
            self.n += 1
            if self.n == 1:
                raise TimeoutError("lookup timed out")
            return EnrichmentResult(organization="Later Inc")

    env, sessions, queue, worker = _setup(Flaky())
    s, _ = sessions.get_or_create(site_id="s", session_id="a", now=T0)

    queue.publish(EnrichmentJob(site_id="s", session_id="a", client_address="192.0.2.1"))
    queue.publish(EnrichmentJob(site_id="s", session_id="a", client_address="192.0.2.2"))
    env.run(until=1)

    assert worker.processed == 1
    assert s.organization_name == "Later Inc"


def test_missing_session_or_result_is_not_applied():
    env, sessions, queue, worker = _setup(CountingResolver(None))
    sessions.get_or_create(site_id="s", session_id="a", now=T0)

    assert worker.process_one(EnrichmentJob(site_id="s", session_id="a", client_address="192.0.2.1")) is False
    assert worker.process_one(EnrichmentJob(site_id="s", session_id="a", client_address=None)) is False
    assert worker.cache == {}

    worker.resolver = CountingResolver(EnrichmentResult(organization="X"))
    assert worker.process_one(EnrichmentJob(site_id="s", session_id="zzz", client_address="192.0.2.1")) is False
