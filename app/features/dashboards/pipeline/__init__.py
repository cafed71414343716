"""
Snapshot assembly for dashboard aggregation.

Assemblers fan out to the data source adapters, join the records in memory
and run the pure derivations. They never cache; caching is the facade's job.
"""

from .career_pipeline import CareerPipelineAssembler
from .user_dashboard import UserDashboardAssembler

__all__ = ["CareerPipelineAssembler", "UserDashboardAssembler"]
