"""
Domain subpackage for dashboard aggregation.
"""

from .snapshots import CareerPipelineSnapshot, Reminder, UserDashboardSnapshot

__all__ = [
    "CareerPipelineSnapshot",
    "Reminder",
    "UserDashboardSnapshot",
]
