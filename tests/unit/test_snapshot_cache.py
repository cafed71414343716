import asyncio

import pytest

from app.features.dashboards.domain.snapshots import CareerPipelineSnapshot
from app.features.dashboards.errors import CacheBuildError, DataSourceError
from app.features.dashboards.services.snapshot_cache import InMemorySnapshotStore, SnapshotCache


class CountingBuild:
    """Build callable that returns a fresh snapshot per call."""

    def __init__(self, now, gate: asyncio.Event | None = None, error: Exception | None = None):
        self.now = now
        self.gate = gate
        self.error = error
        self.calls = 0
        self.cancelled = False

    async def __call__(self):
        self.calls += 1
        try:
            if self.gate is not None:
                await self.gate.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return CareerPipelineSnapshot.empty(self.now)


async def _let_tasks_run(rounds: int = 3):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_live_entry_is_served_without_rebuilding(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    build = CountingBuild(now)

    first = await cache.get_or_compute("dashboard:user:1", 60, build)
    fake_clock.advance(60)
    second = await cache.get_or_compute("dashboard:user:1", 60, build)

    assert build.calls == 1
    assert second is first


@pytest.mark.asyncio
async def test_expired_entry_is_rebuilt(now, fake_clock):
    store = InMemorySnapshotStore()
    cache = SnapshotCache(store, clock=fake_clock)
    build = CountingBuild(now)

    first = await cache.get_or_compute("k", 60, build)
    fake_clock.advance(61)
    second = await cache.get_or_compute("k", 60, build)

    assert build.calls == 2
    assert second is not first
    assert len(store) == 1


@pytest.mark.asyncio
async def test_zero_ttl_is_never_stored(now, fake_clock):
    store = InMemorySnapshotStore()
    cache = SnapshotCache(store, clock=fake_clock)
    build = CountingBuild(now)

    await cache.get_or_compute("k", 0, build)
    await cache.get_or_compute("k", 0, build)

    assert build.calls == 2
    assert len(store) == 0


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_build(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    gate = asyncio.Event()
    build = CountingBuild(now, gate=gate)

    callers = [asyncio.create_task(cache.get_or_compute("k", 60, build)) for _ in range(10)]
    await _let_tasks_run()
    assert cache.in_flight_keys == ["k"]

    gate.set()
    results = await asyncio.gather(*callers)

    assert build.calls == 1
    assert all(result is results[0] for result in results)
    assert cache.in_flight_keys == []


@pytest.mark.asyncio
async def test_different_keys_build_independently(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    build = CountingBuild(now)

    await asyncio.gather(
        cache.get_or_compute("dashboard:user:1", 60, build),
        cache.get_or_compute("dashboard:user:2", 60, build),
    )

    assert build.calls == 2


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_is_not_cached(now, fake_clock):
    store = InMemorySnapshotStore()
    cache = SnapshotCache(store, clock=fake_clock)
    gate = asyncio.Event()
    failing = CountingBuild(now, gate=gate, error=DataSourceError("boom", source="career_offer_packages"))

    callers = [asyncio.create_task(cache.get_or_compute("k", 60, failing)) for _ in range(3)]
    await _let_tasks_run()
    gate.set()
    results = await asyncio.gather(*callers, return_exceptions=True)

    assert failing.calls == 1
    assert all(isinstance(result, CacheBuildError) for result in results)
    assert results[0].key == "k"
    assert results[0].source == "career_offer_packages"
    assert len(store) == 0
    assert cache.in_flight_keys == []

    recovered = CountingBuild(now)
    snapshot = await cache.get_or_compute("k", 60, recovered)

    assert recovered.calls == 1
    assert isinstance(snapshot, CareerPipelineSnapshot)


@pytest.mark.asyncio
async def test_unexpected_errors_propagate_unwrapped(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    build = CountingBuild(now, error=RuntimeError("bug"))

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("k", 60, build)

    assert cache.in_flight_keys == []


@pytest.mark.asyncio
async def test_bypass_skips_cache_read_and_write(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    build = CountingBuild(now)

    cached = await cache.get_or_compute("k", 60, build)
    fresh = await cache.get_or_compute("k", 60, build, bypass=True)
    again = await cache.get_or_compute("k", 60, build)

    assert build.calls == 2
    assert fresh is not cached
    assert again is cached


@pytest.mark.asyncio
async def test_bypass_failure_is_wrapped(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    build = CountingBuild(now, error=DataSourceError("down", source="users"))

    with pytest.raises(CacheBuildError) as exc_info:
        await cache.get_or_compute("k", 60, build, bypass=True)

    assert exc_info.value.source == "users"


@pytest.mark.asyncio
async def test_cancelling_one_waiter_keeps_the_build_for_others(now, fake_clock):
    cache = SnapshotCache(clock=fake_clock)
    gate = asyncio.Event()
    build = CountingBuild(now, gate=gate)

    impatient = asyncio.create_task(cache.get_or_compute("k", 60, build))
    patient = asyncio.create_task(cache.get_or_compute("k", 60, build))
    await _let_tasks_run()

    impatient.cancel()
    with pytest.raises(asyncio.CancelledError):
        await impatient

    gate.set()
    snapshot = await patient

    assert isinstance(snapshot, CareerPipelineSnapshot)
    assert build.calls == 1
    assert build.cancelled is False


@pytest.mark.asyncio
async def test_build_is_cancelled_when_last_waiter_leaves(now, fake_clock):
    store = InMemorySnapshotStore()
    cache = SnapshotCache(store, clock=fake_clock)
    build = CountingBuild(now, gate=asyncio.Event())

    only = asyncio.create_task(cache.get_or_compute("k", 60, build))
    await _let_tasks_run()

    only.cancel()
    with pytest.raises(asyncio.CancelledError):
        await only
    await _let_tasks_run()

    assert build.cancelled is True
    assert cache.in_flight_keys == []
    assert len(store) == 0

    # The next caller starts over
    fresh = CountingBuild(now)
    await cache.get_or_compute("k", 60, fresh)
    assert fresh.calls == 1


@pytest.mark.asyncio
async def test_invalidate_and_invalidate_prefix(now, fake_clock):
    store = InMemorySnapshotStore()
    cache = SnapshotCache(store, clock=fake_clock)
    build = CountingBuild(now)
    for key in ("dashboard:user:1", "dashboard:user:2", "dashboard:career-pipeline:1"):
        await cache.get_or_compute(key, 60, build)

    assert await cache.invalidate("dashboard:user:1") is True
    assert await cache.invalidate("dashboard:user:1") is False
    assert await cache.invalidate_prefix("dashboard:user:") == 1
    assert len(store) == 1

    await cache.get_or_compute("dashboard:user:1", 60, build)
    assert build.calls == 4
