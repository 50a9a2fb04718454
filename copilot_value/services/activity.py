"""Pure helpers that turn seat snapshots into activity figures.

Seats are polled repeatedly; every poll stores one seat document per
assignee with the ``last_activity_at`` GitHub reported at that moment.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from ..schemas.base import ActivityPrecision

DAY = timedelta(days=1)
MAX_ACTIVITY_GAP = timedelta(minutes=30)


@dataclass
class ActivityBucket:
    """Active and inactive members for one time bucket."""

    total_seats: int = 0
    total_active: int = 0
    total_inactive: int = 0
    active: dict[str, dict[str, Any]] = field(default_factory=dict)
    inactive: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalSeats": self.total_seats,
            "totalActive": self.total_active,
            "totalInactive": self.total_inactive,
            "active": self.active,
            "inactive": self.inactive,
        }


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return as_utc(value).replace(hour=0, minute=0, second=0, microsecond=0)


def truncate(value: datetime, precision: ActivityPrecision | str) -> datetime:
    """Round a timestamp down to the bucket it belongs to."""
    value = as_utc(value)
    precision = ActivityPrecision(precision)
    if precision == ActivityPrecision.DAY:
        return start_of_day(value)
    if precision == ActivityPrecision.HOUR:
        return value.replace(minute=0, second=0, microsecond=0)
    return value.replace(second=0, microsecond=0)


def iso_key(value: datetime) -> str:
    """ISO-8601 key with millisecond precision and a Z suffix."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def days_between(earlier: datetime | None, later: datetime) -> int:
    """Whole days from ``earlier`` to ``later``; no activity counts from the epoch."""
    start = as_utc(earlier) if earlier else datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (as_utc(later) - start) // DAY


def bucket_member_activity(
    members: Iterable[dict[str, Any]],
    days_inactive: int = 30,
    precision: ActivityPrecision | str = ActivityPrecision.DAY,
) -> dict[str, dict[str, Any]]:
    """Classify every member as active or inactive per time bucket.

    ``members`` items look like ``{"login": ..., "activity": [{"createdAt",
    "last_activity_at", "last_activity_editor"}, ...]}``. A member is
    inactive in a bucket when the snapshot taken then was more than
    ``days_inactive`` whole days after their last activity. Only the first
    snapshot of a member in a bucket is considered.
    """
    buckets: dict[datetime, ActivityBucket] = {}

    for member in members:
        login = member["login"]
        for activity in member.get("activity") or []:
            created_at = activity["createdAt"]
            bucket = buckets.setdefault(truncate(created_at, precision), ActivityBucket())
            if login in bucket.active or login in bucket.inactive:
                continue
            if days_between(activity.get("last_activity_at"), created_at) > days_inactive:
                bucket.inactive[login] = activity
            else:
                bucket.active[login] = activity

    result: dict[str, dict[str, Any]] = {}
    for key in sorted(buckets):
        bucket = buckets[key]
        bucket.total_active = len(bucket.active)
        bucket.total_inactive = len(bucket.inactive)
        bucket.total_seats = bucket.total_active + bucket.total_inactive
        result[iso_key(key)] = bucket.to_dict()
    return result


def sum_capped_activity(
    activity_times: Sequence[datetime | None],
    cap: timedelta = MAX_ACTIVITY_GAP,
) -> int:
    """Estimate active milliseconds from successive ``last_activity_at`` values.

    Each forward step between two known timestamps adds the gap, capped at
    ``cap``. Unchanged or missing timestamps add nothing.
    """
    total = timedelta()
    previous: datetime | None = None
    for current in activity_times:
        if current is None:
            continue
        current = as_utc(current)
        if previous is not None and current > previous:
            total += min(current - previous, cap)
        previous = current
    return int(total / timedelta(milliseconds=1))


def rank_activity_totals(
    members: Iterable[dict[str, Any]],
    cap: timedelta = MAX_ACTIVITY_GAP,
) -> list[tuple[str, int]]:
    """(login, active ms) pairs, highest first."""
    totals = [
        (
            member["login"],
            sum_capped_activity(
                [seat.get("last_activity_at") for seat in member.get("activity") or []],
                cap,
            ),
        )
        for member in members
    ]
    return sorted(totals, key=lambda item: item[1], reverse=True)


def activity_total_update(
    seat_last_activity_at: datetime | None,
    last_activity_editor: str | None,
    day_start: datetime,
) -> list[dict[str, Any]]:
    """Update pipeline for one member's ``activity_totals`` document of a day.

    The stored count grows by one when the new snapshot shows activity later
    than the stored one and after the start of the day. The stored
    ``last_activity_at``/``last_activity_editor`` then take the snapshot values.
    """
    if seat_last_activity_at is None:
        increment: Any = 0
    else:
        increment = {
            "$cond": {
                "if": {
                    "$and": [
                        {
                            "$or": [
                                {"$eq": [{"$ifNull": ["$last_activity_at", None]}, None]},
                                {"$lt": ["$last_activity_at", seat_last_activity_at]},
                            ]
                        },
                        {"$gt": [seat_last_activity_at, day_start]},
                    ]
                },
                "then": 1,
                "else": 0,
            }
        }

    return [
        {
            "$set": {
                "total_active_time_ms": {
                    "$add": [{"$ifNull": ["$total_active_time_ms", 0]}, increment]
                }
            }
        },
        {
            "$set": {
                "last_activity_at": seat_last_activity_at,
                "last_activity_editor": last_activity_editor,
            }
        },
    ]


def parse_datetime(value: Any) -> datetime | None:
    """Parse GitHub ISO-8601 timestamps ("2024-01-01T10:00:00Z") into aware datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
