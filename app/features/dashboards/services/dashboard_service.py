"""
Aggregation facade: the public entry point for dashboard snapshots.
"""

import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from app.config import settings
from app.features.dashboards.domain.snapshots import CareerPipelineSnapshot, UserDashboardSnapshot
from app.features.dashboards.errors import ValidationError
from app.features.dashboards.pipeline.career_pipeline import CareerPipelineAssembler, utc_now
from app.features.dashboards.pipeline.user_dashboard import UserDashboardAssembler
from app.features.dashboards.repository.career_pipeline_repository import CareerPipelineRepository
from app.features.dashboards.repository.user_activity_repository import UserActivityRepository
from app.features.dashboards.services.snapshot_cache import SnapshotCache
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

USER_DASHBOARD_NAMESPACE = "dashboard:user"
CAREER_PIPELINE_NAMESPACE = "dashboard:career-pipeline"
NAMESPACES = (USER_DASHBOARD_NAMESPACE, CAREER_PIPELINE_NAMESPACE)
NAMESPACE_NAMES = {"user": USER_DASHBOARD_NAMESPACE, "career-pipeline": CAREER_PIPELINE_NAMESPACE}


def normalize_user_id(user_id: Any) -> int:
    """Accept 42, "42" or 42.0; reject everything that is not a positive integer."""
    value: int | None = None
    if isinstance(user_id, bool):
        value = None
    elif isinstance(user_id, int):
        value = user_id
    elif isinstance(user_id, float):
        if math.isfinite(user_id) and user_id.is_integer():
            value = int(user_id)
    elif isinstance(user_id, str):
        text = user_id.strip()
        try:
            value = int(text)
        except ValueError:
            try:
                numeric = float(text)
            except ValueError:
                numeric = math.nan
            if math.isfinite(numeric) and numeric.is_integer():
                value = int(numeric)

    if value is None or value <= 0:
        raise ValidationError("userId must be a positive integer.", field="user_id")
    return value


def cache_key(namespace: str, user_id: int) -> str:
    return f"{namespace}:{user_id}"


class DashboardService:
    """
    Serves user dashboard and career pipeline snapshots through the shared
    snapshot cache. One instance per process, created in the app lifespan.
    """

    def __init__(
        self,
        cache: SnapshotCache,
        *,
        user_repository=UserActivityRepository,
        career_repository=CareerPipelineRepository,
        clock: Callable[[], datetime] = utc_now,
        user_ttl_seconds: float | None = None,
        career_ttl_seconds: float | None = None,
        default_sla_hours: int | None = None,
        reminder_limit: int | None = None,
    ):
        self.cache = cache
        self.user_ttl_seconds = (
            user_ttl_seconds if user_ttl_seconds is not None else settings.USER_DASHBOARD_CACHE_TTL_SECONDS
        )
        self.career_ttl_seconds = (
            career_ttl_seconds
            if career_ttl_seconds is not None
            else settings.CAREER_PIPELINE_CACHE_TTL_SECONDS
        )
        limit = reminder_limit if reminder_limit is not None else settings.DASHBOARD_REMINDER_LIMIT

        self.career_assembler = CareerPipelineAssembler(
            career_repository,
            clock=clock,
            default_sla_hours=(
                default_sla_hours if default_sla_hours is not None else settings.DASHBOARD_DEFAULT_SLA_HOURS
            ),
            reminder_limit=limit,
        )
        self.user_assembler = UserDashboardAssembler(
            user_repository,
            career_pipeline=self._career_pipeline_for,
            clock=clock,
            reminder_limit=limit,
        )

    async def get_user_dashboard(self, user_id: Any, bypass_cache: bool = False) -> UserDashboardSnapshot:
        normalized = normalize_user_id(user_id)
        return await self.cache.get_or_compute(
            cache_key(USER_DASHBOARD_NAMESPACE, normalized),
            self.user_ttl_seconds,
            lambda: self.user_assembler.build(normalized, bypass_cache=bypass_cache),
            bypass=bypass_cache,
        )

    async def get_career_pipeline_automation(
        self, user_id: Any, bypass_cache: bool = False
    ) -> CareerPipelineSnapshot:
        normalized = normalize_user_id(user_id)
        return await self._career_pipeline_for(normalized, bypass_cache)

    async def invalidate_user(self, user_id: Any) -> int:
        """Drop every cached snapshot for one user. Returns the number removed."""
        normalized = normalize_user_id(user_id)
        removed = 0
        for namespace in NAMESPACES:
            if await self.cache.invalidate(cache_key(namespace, normalized)):
                removed += 1
        logger.info("Dashboard cache invalidated for user", user_id=normalized, removed=removed)
        return removed

    async def invalidate_namespace(self, name: str) -> int:
        """Drop every cached snapshot of one kind, for all users."""
        namespace = NAMESPACE_NAMES.get(name)
        if namespace is None:
            raise ValidationError(
                f"namespace must be one of: {', '.join(NAMESPACE_NAMES)}.", field="namespace"
            )
        return await self.cache.invalidate_prefix(f"{namespace}:")

    async def _career_pipeline_for(self, user_id: int, bypass_cache: bool) -> CareerPipelineSnapshot:
        return await self.cache.get_or_compute(
            cache_key(CAREER_PIPELINE_NAMESPACE, user_id),
            self.career_ttl_seconds,
            lambda: self.career_assembler.build(user_id),
            bypass=bypass_cache,
        )
