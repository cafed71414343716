"""
Dashboard routes.

Thin HTTP surface over DashboardService. The service instance is created in
the application lifespan and read from ``app.state``; tests swap it through
``dependency_overrides``.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.features.dashboards.domain.snapshots import CareerPipelineSnapshot, UserDashboardSnapshot
from app.features.dashboards.services.dashboard_service import DashboardService

router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def get_dashboard_service(request: Request) -> DashboardService:
    service = getattr(request.app.state, "dashboard_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard service not initialized",
        )
    return service


@router.get("/users/{user_id}", response_model=UserDashboardSnapshot)
async def get_user_dashboard(
    user_id: str,
    bypass_cache: bool = Query(False, description="Rebuild without reading or writing the cache"),
    service: DashboardService = Depends(get_dashboard_service),
) -> UserDashboardSnapshot:
    return await service.get_user_dashboard(user_id, bypass_cache=bypass_cache)


@router.get("/users/{user_id}/career-pipeline", response_model=CareerPipelineSnapshot)
async def get_career_pipeline_automation(
    user_id: str,
    bypass_cache: bool = Query(False, description="Rebuild without reading or writing the cache"),
    service: DashboardService = Depends(get_dashboard_service),
) -> CareerPipelineSnapshot:
    return await service.get_career_pipeline_automation(user_id, bypass_cache=bypass_cache)


@router.delete("/users/{user_id}/cache")
async def invalidate_user_cache(
    user_id: str,
    service: DashboardService = Depends(get_dashboard_service),
) -> dict:
    """Drop cached snapshots for one user; the next read rebuilds them."""
    removed = await service.invalidate_user(user_id)
    return {"invalidated": removed}


@router.delete("/cache/{namespace}")
async def invalidate_cache_namespace(
    namespace: str,
    service: DashboardService = Depends(get_dashboard_service),
) -> dict:
    """Drop one kind of snapshot (``user`` or ``career-pipeline``) for every user."""
    removed = await service.invalidate_namespace(namespace)
    return {"invalidated": removed}
