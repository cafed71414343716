"""
Shared plumbing for the dashboard data source adapters.

Adapters are read-only. Each call issues exactly one query, whatever the
number of parent ids, and re-raises store failures as DataSourceError tagged
with the collection name.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from app.db.helpers import DatabaseError, fetch_all
from app.features.dashboards.errors import DataSourceError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MIN_LIMIT = 1
MAX_LIMIT = 500
SECOND_ORDER_LIMIT = 200
# Batched reads scale with the number of parents they cover
PER_PARENT_LIMIT = 25
BATCH_ROW_CEILING = 10_000


@dataclass(slots=True, frozen=True)
class RecordFilters:
    """Optional narrowing applied by every list call."""

    since: datetime | None = None
    until: datetime | None = None
    statuses: tuple[str, ...] | None = None
    limit: int | None = None

    def resolve_limit(self, default: int) -> int:
        return clamp_limit(self.limit, default)

    def resolve_batch_limit(self, parent_count: int) -> int:
        """Row cap for one batched read covering parent_count parents."""
        if self.limit is not None:
            return clamp_limit(self.limit, SECOND_ORDER_LIMIT)
        return min(BATCH_ROW_CEILING, max(SECOND_ORDER_LIMIT, PER_PARENT_LIMIT * parent_count))


NO_FILTERS = RecordFilters()


def clamp_limit(limit: int | None, default: int) -> int:
    if limit is None:
        return default
    return max(MIN_LIMIT, min(MAX_LIMIT, int(limit)))


def build_conditions(
    base: Iterable[str],
    params: list[Any],
    filters: RecordFilters,
    *,
    timestamp_column: str,
    status_column: str = '"status"',
) -> str:
    """Append the filter predicates to base and return the WHERE body."""
    conditions = list(base)
    if filters.since is not None:
        conditions.append(f"{timestamp_column} >= %s")
        params.append(filters.since)
    if filters.until is not None:
        conditions.append(f"{timestamp_column} < %s")
        params.append(filters.until)
    if filters.statuses:
        conditions.append(f"{status_column} = ANY(%s)")
        params.append(list(filters.statuses))
    return " AND ".join(conditions) if conditions else "TRUE"


def unique_ids(ids: Iterable[int | None]) -> list[int]:
    """Deduplicate parent ids preserving first-seen order, dropping None."""
    seen: dict[int, None] = {}
    for value in ids:
        if value is not None:
            seen.setdefault(int(value), None)
    return list(seen)


async def query_source(
    source: str, query: str, params: tuple | list = (), *, limit: int | None = None
) -> list[dict[str, Any]]:
    """
    Run one read against the store for the named collection.

    When the read was capped at ``limit`` rows and came back full, the result
    may be truncated; that is logged so partial sections are visible.
    """
    try:
        rows = await fetch_all(query, tuple(params))
    except DatabaseError as e:
        logger.error("Data source query failed", source=source, error=str(e))
        raise DataSourceError(
            f"Failed to load {source}: {e}", source=source, recoverable=e.recoverable
        ) from e
    if limit is not None and len(rows) >= limit:
        logger.warning("Data source read hit its row limit", source=source, limit=limit)
    return rows


def to_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_money(value: Any) -> float:
    """Money columns arrive as Decimal; absent or malformed amounts count as zero."""
    numeric = to_float(value)
    return round(numeric, 2) if numeric is not None else 0.0


def to_int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
