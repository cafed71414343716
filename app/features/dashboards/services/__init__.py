"""
Service layer for dashboard aggregation.
"""

from .dashboard_service import DashboardService, normalize_user_id
from .snapshot_cache import InMemorySnapshotStore, RedisSnapshotStore, SnapshotCache

__all__ = [
    "DashboardService",
    "InMemorySnapshotStore",
    "RedisSnapshotStore",
    "SnapshotCache",
    "normalize_user_id",
]
