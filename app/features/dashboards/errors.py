"""
Error taxonomy for dashboard aggregation.

ValidationError is a client error and is never retried. DataSourceError and
CacheBuildError are server errors; neither is ever replaced by stale data.
"""

from app.db.helpers import DatabaseError


class ValidationError(ValueError):
    """Malformed subject identifier or build options."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class DataSourceError(DatabaseError):
    """A data source adapter call failed; aborts the whole snapshot build."""

    def __init__(self, message: str, source: str, recoverable: bool = True):
        super().__init__(message, operation=source, recoverable=recoverable)
        self.source = source


class CacheBuildError(Exception):
    """A single-flight build failed; delivered to every waiter on the key."""

    def __init__(self, key: str, cause: DataSourceError):
        super().__init__(f"Snapshot build failed for '{key}': {cause}")
        self.key = key
        self.cause = cause

    @property
    def source(self) -> str:
        return self.cause.source
