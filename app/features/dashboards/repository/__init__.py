"""
Data source adapters for dashboard aggregation.
"""

from .base import RecordFilters
from .career_pipeline_repository import CareerPipelineRepository
from .user_activity_repository import UserActivityRepository

__all__ = [
    "CareerPipelineRepository",
    "RecordFilters",
    "UserActivityRepository",
]
