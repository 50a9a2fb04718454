"""In-process cron scheduling.

Supports standard 5-field expressions (minute hour day-of-month month
day-of-week) with ``*``, lists, ranges, steps and ``JAN``/``MON`` style
names. A leading seconds field (6 fields) is accepted and ignored; jobs
fire at minute granularity.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CRON_EXPRESSION = "0 * * * *"

# (name, min, max)
FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)

MONTH_NAMES = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")
FIELD_NAMES = {
    "month": {name: number for number, name in enumerate(MONTH_NAMES, start=1)},
    "weekday": {name: number for number, name in enumerate(WEEKDAY_NAMES)},
}


class InvalidCronExpressionError(ValueError):
    """The cron expression cannot be parsed."""
    pass


def _replace_names(value: str, name: str) -> str:
    """``JAN``/``MON`` style names to numbers, case-insensitively."""
    names = FIELD_NAMES.get(name, {})

    def number(match: re.Match) -> str:
        token = match.group(0).lower()
        if token not in names:
            accepted = f"; use {'/'.join(n.upper() for n in names)}" if names else ""
            raise InvalidCronExpressionError(f"Unknown name {match.group(0)!r} in {name} field{accepted}")
        return str(names[token])

    return re.sub(r"[A-Za-z]+", number, value)


def _parse_field(value: str, name: str, low: int, high: int) -> frozenset[int]:
    # 7 is accepted as Sunday in the weekday field
    upper = 7 if name == "weekday" else high
    allowed: set[int] = set()
    for part in _replace_names(value, name).split(","):
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise InvalidCronExpressionError(f"Invalid step in {name} field: {value}")
            step = int(step_text)

        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            if not (start_text.isdigit() and end_text.isdigit()):
                raise InvalidCronExpressionError(f"Invalid range in {name} field: {value}")
            start, end = int(start_text), int(end_text)
        elif part.isdigit():
            start = int(part)
            end = upper if step > 1 else start
        else:
            raise InvalidCronExpressionError(f"Invalid {name} field: {value}")

        if start < low or end > upper or start > end:
            raise InvalidCronExpressionError(f"{name} field out of range: {value}")

        allowed.update(range(start, end + 1, step))

    if name == "weekday" and 7 in allowed:
        allowed.discard(7)
        allowed.add(0)
    return frozenset(allowed)


@dataclass(frozen=True)
class CronSchedule:
    """A parsed cron expression."""

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        parts = expression.split()
        if len(parts) == 6:
            parts = parts[1:]
        if len(parts) != 5:
            raise InvalidCronExpressionError(
                f"Cron expression must have 5 fields, got {len(parts)}: {expression!r}"
            )
        parsed = [_parse_field(part, *spec) for part, spec in zip(parts, FIELDS)]
        return cls(
            expression=expression,
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=parsed[4],
            day_restricted=parts[2] != "*",
            weekday_restricted=parts[4] != "*",
        )

    def _day_matches(self, moment: datetime) -> bool:
        # Python: Monday=0; cron: Sunday=0
        weekday = (moment.weekday() + 1) % 7
        day_ok = moment.day in self.days
        weekday_ok = weekday in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self._day_matches(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after ``moment`` (in ``moment``'s timezone)."""
        candidate = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + timedelta(days=366 * 5)
        while candidate < limit:
            if candidate.month not in self.months or not self._day_matches(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute in self.minutes:
                return candidate
            candidate += timedelta(minutes=1)
        raise InvalidCronExpressionError(f"Cron expression never matches: {self.expression!r}")


def resolve_timezone(name: str | None) -> ZoneInfo | timezone:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning(f"Unknown timezone {name}, using UTC")
        return timezone.utc


Job = Callable[[], Awaitable[object]]


class CronScheduler:
    """Runs one async job on a cron schedule inside the event loop."""

    def __init__(self, name: str, expression: str = DEFAULT_CRON_EXPRESSION, tz: str | None = None):
        self.name = name
        self.schedule = CronSchedule.parse(expression)
        self.tz = resolve_timezone(tz)
        self._job: Job | None = None
        self._task: asyncio.Task | None = None
        self.last_run_at: datetime | None = None

    @property
    def expression(self) -> str:
        return self.schedule.expression

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run(self, now: datetime | None = None) -> datetime:
        now = (now or datetime.now(timezone.utc)).astimezone(self.tz)
        return self.schedule.next_after(now)

    def start(self, job: Job, expression: str | None = None, tz: str | None = None) -> None:
        """Start (or restart) the schedule on the running loop."""
        if expression:
            self.schedule = CronSchedule.parse(expression)
        if tz:
            self.tz = resolve_timezone(tz)
        self._job = job
        self.stop()
        self._task = asyncio.create_task(self._loop(), name=f"cron-{self.name}")
        logger.info(f"{self.name} cron task {self.expression} started")

    def reschedule(self, expression: str) -> None:
        """Change the expression; a running schedule is restarted."""
        self.schedule = CronSchedule.parse(expression)
        logger.info(f"{self.name} cron rescheduled to {expression}")
        if self.running and self._job is not None:
            self.start(self._job)

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _loop(self) -> None:
        while True:
            now = datetime.now(timezone.utc)
            next_run = self.next_run(now)
            await asyncio.sleep(max((next_run - now).total_seconds(), 0))
            self.last_run_at = datetime.now(timezone.utc)
            try:
                await self._job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{self.name} cron job failed: {e}")


metrics_scheduler = CronScheduler("metrics")
