import asyncio
import math
from datetime import timedelta

import pytest

from app.features.dashboards.errors import CacheBuildError, ValidationError
from app.features.dashboards.services.dashboard_service import DashboardService, normalize_user_id
from app.features.dashboards.services.snapshot_cache import InMemorySnapshotStore, SnapshotCache


class MovingNow:
    def __init__(self, start):
        self.value = start

    def __call__(self):
        return self.value


@pytest.fixture
def moving_now(now):
    return MovingNow(now)


@pytest.fixture
def store():
    return InMemorySnapshotStore()


@pytest.fixture
def service(store, fake_clock, moving_now, user_repo, career_repo, records):
    user_repo.user = records.user()
    user_repo.applications = [records.application(id=1)]
    career_repo.board = records.board(id=1)
    career_repo.stages = [records.stage(id=10)]
    career_repo.opportunities = [records.opportunity(id=100, stage_id=10)]
    return DashboardService(
        SnapshotCache(store, clock=fake_clock),
        user_repository=user_repo,
        career_repository=career_repo,
        clock=moving_now,
        user_ttl_seconds=60,
        career_ttl_seconds=60,
        default_sla_hours=None,
        reminder_limit=8,
    )


@pytest.mark.parametrize("raw", [42, "42", " 42 ", 42.0, "42.0"])
def test_normalize_user_id_accepts_integral_values(raw):
    assert normalize_user_id(raw) == 42


@pytest.mark.parametrize("raw", [0, -3, "0", "abc", "", None, True, 4.5, "4.5", math.nan, [42]])
def test_normalize_user_id_rejects_everything_else(raw):
    with pytest.raises(ValidationError) as exc_info:
        normalize_user_id(raw)

    assert exc_info.value.field == "user_id"


@pytest.mark.asyncio
async def test_invalid_user_id_never_reaches_a_data_source(service, user_repo, career_repo):
    with pytest.raises(ValidationError):
        await service.get_user_dashboard("not-a-user")
    with pytest.raises(ValidationError):
        await service.get_career_pipeline_automation(-1)

    assert user_repo.total_calls == 0
    assert career_repo.total_calls == 0


@pytest.mark.asyncio
async def test_repeat_requests_within_ttl_are_served_from_cache(service, user_repo, career_repo):
    first = await service.get_user_dashboard(42)
    second = await service.get_user_dashboard("42")

    assert second is first
    assert user_repo.calls["get_user"] == 1
    assert career_repo.calls["get_primary_board"] == 1


@pytest.mark.asyncio
async def test_snapshots_are_stored_under_namespaced_keys(service, store):
    await service.get_user_dashboard(42)

    assert await store.get("dashboard:user:42") is not None
    assert await store.get("dashboard:career-pipeline:42") is not None
    assert len(store) == 2


@pytest.mark.asyncio
async def test_nested_career_snapshot_is_shared_with_direct_requests(service, career_repo):
    dashboard = await service.get_user_dashboard(42)
    career = await service.get_career_pipeline_automation(42)

    assert career is dashboard.career_pipeline_automation
    assert career.summary.total_opportunities == 1
    assert career_repo.calls["get_primary_board"] == 1


@pytest.mark.asyncio
async def test_bypass_returns_fresh_data_and_leaves_cache_alone(service, user_repo, career_repo, moving_now):
    cached = await service.get_user_dashboard(42)
    moving_now.value += timedelta(seconds=5)

    fresh = await service.get_user_dashboard(42, bypass_cache=True)
    again = await service.get_user_dashboard(42)

    assert fresh.generated_at > cached.generated_at
    assert fresh.career_pipeline_automation.generated_at == fresh.generated_at
    assert again is cached
    assert user_repo.calls["get_user"] == 2
    assert career_repo.calls["get_primary_board"] == 2


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(service, user_repo, fake_clock):
    await service.get_user_dashboard(42)
    fake_clock.advance(61)
    await service.get_user_dashboard(42)

    assert user_repo.calls["get_user"] == 2


@pytest.mark.asyncio
async def test_concurrent_requests_build_once(service, user_repo, career_repo):
    user_repo.delay = 0.01

    results = await asyncio.gather(*(service.get_user_dashboard(42) for _ in range(5)))

    assert all(result is results[0] for result in results)
    assert user_repo.calls["get_user"] == 1
    assert career_repo.calls["get_primary_board"] == 1


@pytest.mark.asyncio
async def test_invalidate_user_drops_both_snapshots(service, user_repo, store):
    await service.get_user_dashboard(42)

    assert await service.invalidate_user("42") == 2
    assert await service.invalidate_user(42) == 0
    assert len(store) == 0

    await service.get_user_dashboard(42)
    assert user_repo.calls["get_user"] == 2


@pytest.mark.asyncio
async def test_invalidate_namespace_drops_one_kind_for_every_user(service, career_repo, store):
    await service.get_user_dashboard(42)
    await service.get_user_dashboard(7)

    assert await service.invalidate_namespace("career-pipeline") == 2
    assert len(store) == 2
    assert await store.get("dashboard:user:7") is not None

    await service.get_career_pipeline_automation(42)
    assert career_repo.calls["get_primary_board"] == 3


@pytest.mark.asyncio
async def test_unknown_namespace_is_rejected(service, store):
    with pytest.raises(ValidationError) as exc_info:
        await service.invalidate_namespace("dashboard")

    assert exc_info.value.field == "namespace"


@pytest.mark.asyncio
async def test_data_source_failure_surfaces_as_cache_build_error(service, user_repo, store):
    user_repo.fail_on = {"list_notifications"}

    with pytest.raises(CacheBuildError) as exc_info:
        await service.get_user_dashboard(42)

    assert exc_info.value.key == "dashboard:user:42"
    assert exc_info.value.source == "list_notifications"
    assert await store.get("dashboard:user:42") is None

    user_repo.fail_on = set()
    snapshot = await service.get_user_dashboard(42)
    assert snapshot.summary.total_applications == 1


@pytest.mark.asyncio
async def test_nested_career_failure_fails_the_dashboard(service, career_repo):
    career_repo.fail_on = {"list_stages"}

    with pytest.raises(CacheBuildError) as exc_info:
        await service.get_user_dashboard(42)

    assert exc_info.value.key == "dashboard:career-pipeline:42"
    assert exc_info.value.source == "list_stages"
