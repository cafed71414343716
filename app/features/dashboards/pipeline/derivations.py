"""
Pure derivation helpers shared by the snapshot assemblers.

Nothing in this module reads the clock. Every time-sensitive function takes
the build's ``now`` explicitly so one snapshot is internally consistent.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Generic, TypeVar

from app.features.dashboards.domain.snapshots import Reminder, Severity, ValueChange

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

SEVERITY_RANK: dict[str, int] = {"critical": 0, "warning": 1, "info": 2}
DEFAULT_REMINDER_LIMIT = 8

NEXT_STEPS: dict[str, str] = {
    "draft": "Finalize documents and submit the application.",
    "submitted": "Awaiting review. Send a polite nudge if there is no update in 5 days.",
    "under_review": "Prepare recruiter notes and confirm availability for screening.",
    "shortlisted": "Expect interview scheduling. Review role research notes.",
    "interview": "Confirm interview logistics and share prep material with collaborators.",
    "offered": "Review compensation details and compare against target ranges.",
    "hired": "Complete onboarding checklist and archive supporting documents.",
    "withdrawn": "Archive the record and capture learnings for future opportunities.",
}
DEFAULT_NEXT_STEP = "Close out the record and note any feedback for retrospectives."


# --- time -------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def elapsed_hours(start: Any, now: datetime) -> float | None:
    started = parse_timestamp(start)
    if started is None:
        return None
    return (now - started).total_seconds() / SECONDS_PER_HOUR


def elapsed_days(start: Any, now: datetime) -> int | None:
    """Whole days since start, floored."""
    started = parse_timestamp(start)
    if started is None:
        return None
    return math.floor((now - started).total_seconds() / SECONDS_PER_DAY)


def days_until(due: Any, now: datetime) -> int | None:
    """Whole days until due, rounded up; negative once past due."""
    due_at = parse_timestamp(due)
    if due_at is None:
        return None
    return math.ceil((due_at - now).total_seconds() / SECONDS_PER_DAY)


def add_days(value: Any, days: int) -> datetime | None:
    base = parse_timestamp(value)
    if base is None:
        return None
    return base + timedelta(days=days)


def is_sla_breached(status_flag: str | None, hours_elapsed: float | None, sla_hours: float | None) -> bool:
    """
    A record is overdue when it is explicitly flagged so, or when it has sat
    longer than its SLA. Either condition alone is enough.
    """
    if status_flag == "overdue":
        return True
    if hours_elapsed is None or sla_hours is None:
        return False
    return hours_elapsed > sla_hours


# --- reminders --------------------------------------------------------------


def reminder_severity(overdue: bool, at_risk: bool = False) -> Severity:
    if overdue:
        return "critical"
    if at_risk:
        return "warning"
    return "info"


def build_reminder(
    *,
    source: str,
    record_id: int,
    title: str,
    due_at: Any,
    now: datetime,
    severity: Severity | None = None,
    overdue: bool | None = None,
    at_risk: bool = False,
    context: str | None = None,
) -> Reminder:
    """
    Create a reminder for one record.

    ``overdue`` carries the record's own overdue verdict (explicit flag or
    breached SLA); when omitted it falls back to the due date having passed.
    Unless a severity is given, overdue reminders are critical, reminders
    whose record has a risk flag set are warning, and the rest are info.
    """
    due = parse_timestamp(due_at)
    if overdue is None:
        overdue = due is not None and due < now
    if severity is None:
        severity = reminder_severity(overdue, at_risk)
    return Reminder(
        id=f"{source}:{record_id}",
        source=source,
        record_id=record_id,
        title=title,
        due_at=due,
        severity=severity,
        overdue=overdue,
        context=context,
    )


def _reminder_sort_key(reminder: Reminder) -> tuple:
    due = reminder.due_at
    return (
        due is None,
        due.timestamp() if due is not None else 0.0,
        SEVERITY_RANK.get(reminder.severity, len(SEVERITY_RANK)),
        reminder.id,
    )


def rank_reminders(reminders: Iterable[Reminder], limit: int = DEFAULT_REMINDER_LIMIT) -> tuple[Reminder, ...]:
    """Soonest due first, undated last; ties by severity then id."""
    return tuple(sorted(reminders, key=_reminder_sort_key)[: max(limit, 0)])


# --- grouping ---------------------------------------------------------------


@dataclass(slots=True)
class Bucket(Generic[T]):
    key: str
    label: str
    items: list[T] = field(default_factory=list)
    overdue_count: int = 0

    @property
    def count(self) -> int:
        return len(self.items)


def bucket_records(
    definitions: Iterable[tuple[str, str]],
    records: Iterable[T],
    key_fn: Callable[[T], str | None],
    overdue_fn: Callable[[T], bool] | None = None,
) -> list[Bucket[T]]:
    """
    Group records into the given (key, label) buckets, keeping definition order.

    Records whose key matches no definition are dropped; buckets are never
    invented for them.
    """
    buckets = {key: Bucket(key=key, label=label) for key, label in definitions}
    for record in records:
        bucket = buckets.get(key_fn(record))
        if bucket is None:
            continue
        bucket.items.append(record)
        if overdue_fn is not None and overdue_fn(record):
            bucket.overdue_count += 1
    return list(buckets.values())


def group_by(records: Iterable[T], key_fn: Callable[[T], K]) -> dict[K, list[T]]:
    """Foreign-key lookup map preserving record order within each key."""
    grouped: dict[K, list[T]] = defaultdict(list)
    for record in records:
        grouped[key_fn(record)].append(record)
    return dict(grouped)


# --- numbers ----------------------------------------------------------------


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero; ``round`` alone would round them to even."""
    exponent = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))


def average(values: Iterable[float | int | None], precision: int = 1) -> float | None:
    """Mean of the non-null values; None when nothing contributes."""
    present = [float(value) for value in values if value is not None]
    if not present:
        return None
    return round_half_up(sum(present) / len(present), precision)


def percentage(part: float, total: float, decimals: int = 0) -> float:
    if not total:
        return 0
    value = round_half_up(part / total * 100, decimals)
    return value if decimals else int(value)


def round_money(value: Any) -> float:
    """Half-up rounding to cents; unparseable amounts count as zero."""
    if value is None:
        return 0.0
    try:
        amount = Decimal(str(value))
    except ArithmeticError:
        return 0.0
    if not amount.is_finite():
        return 0.0
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def sum_money(values: Iterable[Any]) -> float:
    """Sum money amounts, rounding at every addition."""
    total = 0.0
    for value in values:
        total = round_money(total + round_money(value))
    return total


def compute_change(current: float | None, previous: float | None) -> ValueChange | None:
    if current is None or previous is None:
        return None
    delta = float(current) - float(previous)
    percent = None if float(previous) == 0 else round_half_up(delta / float(previous) * 100, 1)
    direction = "up" if delta > 0 else "down" if delta < 0 else "flat"
    return ValueChange(absolute=round_half_up(delta, 2), percent=percent, direction=direction)


def resolve_next_step(status: str | None) -> str:
    return NEXT_STEPS.get(status or "", DEFAULT_NEXT_STEP)


def first_present(*values: T | None) -> T | None:
    for value in values:
        if value is not None:
            return value
    return None


def count_where(records: Sequence[T], predicate: Callable[[T], bool]) -> int:
    return sum(1 for record in records if predicate(record))
