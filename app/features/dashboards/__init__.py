"""
Dashboard aggregation feature package.

Every layer of the read-side dashboard lives here: record and snapshot
types, data source adapters, derivations and assemblers, the snapshot cache
and the facade, and the HTTP router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as dashboards_router  # noqa: F401
from .domain.snapshots import CareerPipelineSnapshot, UserDashboardSnapshot  # noqa: F401
from .services.dashboard_service import DashboardService  # noqa: F401
from .services.snapshot_cache import SnapshotCache  # noqa: F401
