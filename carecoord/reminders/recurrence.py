"""
Medication schedule models and next-run evaluation.

A schedule is either one-time (a single instant) or recurring (a set of
wall-clock times on a set of weekdays in an IANA timezone). The evaluator is
pure: every caller (create/update, manual trigger, scheduler tick) derives
``next_run_at`` from the same function, so the stored value is always a cache
of this computation.
"""
from dataclasses import dataclass, field
from datetime import datetime, date, time, timedelta, timezone as dt_timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
import re

from carecoord.core.config import settings
from carecoord.utils.timezone import get_zoneinfo, is_valid_timezone, to_utc_aware


# Long enough for any weekday subset: the sparsest pattern fires every 7th day
HORIZON_DAYS = 8 * 7

DEFAULT_TIMES_OF_DAY: Tuple[str, ...] = ("08:00",)
ALL_DAYS: Tuple[int, ...] = (0, 1, 2, 3, 4, 5, 6)  # 0=Sunday

_HHMM = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class ScheduleError(ValueError):
    """Malformed schedule configuration."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name
        self.message = message


class ScheduleType(Enum):
    """Persisted schedule tags"""
    ONE_TIME = "one_time"
    RECURRING = "recurring"


def _default_timezone() -> str:
    return settings.DEFAULT_TIMEZONE


@dataclass(frozen=True)
class OneTimeSchedule:
    """Fires once at ``at``."""
    at: datetime
    timezone: str = field(default_factory=_default_timezone)

    @property
    def type(self) -> ScheduleType:
        return ScheduleType.ONE_TIME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "at": to_utc_aware(self.at).isoformat(),
            "timezone": self.timezone,
        }


@dataclass(frozen=True)
class RecurringSchedule:
    """Fires at every (weekday, time-of-day) combination, indefinitely."""
    times_of_day: Tuple[str, ...] = DEFAULT_TIMES_OF_DAY
    days_of_week: Tuple[int, ...] = ALL_DAYS
    timezone: str = field(default_factory=_default_timezone)

    @property
    def type(self) -> ScheduleType:
        return ScheduleType.RECURRING

    def effective_times(self) -> List[time]:
        """Configured times (or the default), parsed, de-duplicated, ascending."""
        raw = self.times_of_day or DEFAULT_TIMES_OF_DAY
        return sorted({parse_time_of_day(value) for value in raw})

    def effective_days(self) -> frozenset:
        return frozenset(self.days_of_week or ALL_DAYS)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timesOfDay": list(self.times_of_day),
            "daysOfWeek": list(self.days_of_week),
            "timezone": self.timezone,
        }


Schedule = Union[OneTimeSchedule, RecurringSchedule]


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:mm`` 24h string."""
    match = _HHMM.match(str(value).strip())
    if not match:
        raise ScheduleError("timesOfDay", f"invalid time of day {value!r}, expected HH:mm")
    return time(hour=int(match.group(1)), minute=int(match.group(2)))


def _parse_instant(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_utc_aware(value)
    if isinstance(value, str) and value:
        try:
            return to_utc_aware(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    raise ScheduleError("at", f"invalid instant {value!r}")


def _normalize_schedule_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Accept snake_case aliases for the camelCase persisted keys."""
    normalized = dict(data)
    if "timesOfDay" not in normalized and "times_of_day" in normalized:
        normalized["timesOfDay"] = normalized.pop("times_of_day")
    if "daysOfWeek" not in normalized and "days_of_week" in normalized:
        normalized["daysOfWeek"] = normalized.pop("days_of_week")
    return normalized


def parse_schedule(data: Union[Dict[str, Any], Schedule]) -> Schedule:
    """Validate a stored or submitted schedule dict and build the schedule model."""
    if isinstance(data, (OneTimeSchedule, RecurringSchedule)):
        return data
    if not isinstance(data, dict):
        raise ScheduleError("schedule", "must be an object")

    data = _normalize_schedule_dict(data)
    try:
        schedule_type = ScheduleType(data.get("type"))
    except ValueError:
        raise ScheduleError("type", f"must be one of 'one_time', 'recurring', got {data.get('type')!r}")

    tz_name = data.get("timezone") or settings.DEFAULT_TIMEZONE
    if not is_valid_timezone(tz_name):
        raise ScheduleError("timezone", f"unknown IANA timezone {tz_name!r}")

    if schedule_type == ScheduleType.ONE_TIME:
        if not data.get("at"):
            raise ScheduleError("at", "is required for one_time schedules")
        return OneTimeSchedule(at=_parse_instant(data["at"]), timezone=tz_name)

    times = data.get("timesOfDay") or list(DEFAULT_TIMES_OF_DAY)
    days = data.get("daysOfWeek") or list(ALL_DAYS)
    if isinstance(times, str) or not isinstance(times, (list, tuple)):
        raise ScheduleError("timesOfDay", "must be a list of HH:mm strings")
    if not isinstance(days, (list, tuple)):
        raise ScheduleError("daysOfWeek", "must be a list of weekday numbers")
    for value in times:
        parse_time_of_day(value)
    for value in days:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 6:
            raise ScheduleError("daysOfWeek", f"weekday {value!r} outside 0..6 (0=Sunday)")

    return RecurringSchedule(
        times_of_day=tuple(str(v).strip() for v in times),
        days_of_week=tuple(sorted(set(days))),
        timezone=tz_name,
    )


def weekday_sunday_first(day: date) -> int:
    """Python's Monday=0 weekday, renumbered so that Sunday=0."""
    return (day.weekday() + 1) % 7


def compute_next_run_at(
    schedule: Union[Dict[str, Any], Schedule],
    last_triggered_at: Optional[datetime],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    """Next UTC instant at which the schedule fires, or None if it never will again.

    Naive datetimes are taken as UTC. The result is always strictly after
    ``now`` and inside ``[start_date, end_date]`` when those are set.
    """
    schedule = parse_schedule(schedule)
    now = to_utc_aware(now)
    start_date = to_utc_aware(start_date)
    end_date = to_utc_aware(end_date)

    if isinstance(schedule, OneTimeSchedule):
        return _one_time_next(schedule, start_date, end_date, now)
    return _recurring_next(schedule, to_utc_aware(last_triggered_at), start_date, end_date, now)


def _one_time_next(
    schedule: OneTimeSchedule,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    at = to_utc_aware(schedule.at)
    if at <= now:
        return None
    if start_date is not None and at < start_date:
        return None
    if end_date is not None and at > end_date:
        return None
    return at


def _recurring_next(
    schedule: RecurringSchedule,
    last_triggered_at: Optional[datetime],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    now: datetime,
) -> Optional[datetime]:
    zone = get_zoneinfo(schedule.timezone)
    days = schedule.effective_days()
    times = schedule.effective_times()

    cursor = last_triggered_at or now
    if start_date is not None and start_date > cursor:
        # Scan window opens at start_date, however far ahead
        cursor = start_date
    cursor = cursor.astimezone(zone)
    first_day = cursor.date()

    for offset in range(HORIZON_DAYS):
        day = first_day + timedelta(days=offset)
        if weekday_sunday_first(day) not in days:
            continue
        for tod in times:
            # Wall-clock candidate in the schedule zone; compare as instants in UTC
            candidate = datetime.combine(day, tod, tzinfo=zone).astimezone(dt_timezone.utc)
            if candidate <= now:
                continue
            if start_date is not None and candidate < start_date:
                continue
            if end_date is not None and candidate > end_date:
                # Candidates only grow from here on
                return None
            return candidate

    return None
