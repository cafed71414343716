"""
HTTP routes for dashboard aggregation.
"""

from .router import get_dashboard_service, router

__all__ = ["get_dashboard_service", "router"]
