from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping

from .dates import WEEKDAY_NAMES, iter_days, parse_date_key, parse_iso_utc
from .models import DateRange, EntryType, Holiday, Profile, TimeEntry, TimeInterval

logger = logging.getLogger(__name__)

_ISO_DURATION = re.compile(
    r"^P(?!$)"
    r"(?:(?P<weeks>\d+(?:\.\d+)?)W)?"
    r"(?:(?P<days>\d+(?:\.\d+)?)D)?"
    r"(?:T(?=\d)"
    r"(?:(?P<hours>\d+(?:\.\d+)?)H)?"
    r"(?:(?P<minutes>\d+(?:\.\d+)?)M)?"
    r"(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)
_UNIT_SECONDS = {"weeks": 604800, "days": 86400, "hours": 3600, "minutes": 60, "seconds": 1}


def parse_duration_seconds(value: object) -> float | None:
    """Accept an ISO-8601 period ("PT1H30M") or a raw second count; None when neither."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        seconds = float(value)
        return seconds if math.isfinite(seconds) and seconds >= 0 else None

    text = str(value).strip().upper()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return seconds if math.isfinite(seconds) and seconds >= 0 else None

    match = _ISO_DURATION.match(text)
    if match is None:
        return None
    return sum(float(amount) * _UNIT_SECONDS[unit] for unit, amount in match.groupdict().items() if amount)


def _rate_cents(value: object) -> int:
    if isinstance(value, Mapping):
        value = value.get("amount")
    if value is None or isinstance(value, bool):
        return 0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0
    return int(round(amount)) if math.isfinite(amount) else 0


def _pick_rate(*values: object) -> int:
    for value in values:
        cents = _rate_cents(value)
        if cents > 0:
            return cents
    return 0


def effective_duration_seconds(raw_interval: Mapping) -> float:
    end = parse_iso_utc(raw_interval.get("end"))
    if end is None:
        # No usable end (running or corrupt entry): it contributes nothing.
        return 0.0

    duration = parse_duration_seconds(raw_interval.get("duration"))
    if duration is not None:
        return duration

    start = parse_iso_utc(raw_interval.get("start"))
    if start is None:
        return 0.0
    return max(0.0, (end - start).total_seconds())


def normalize_entry(raw: Mapping) -> TimeEntry:
    interval = raw.get("timeInterval") or {}
    if not isinstance(interval, Mapping):
        interval = {}

    return TimeEntry(
        id=str(raw.get("id") or raw.get("_id") or ""),
        user_id=str(raw.get("userId") or ""),
        user_name=str(raw.get("userName") or ""),
        billable=raw.get("billable") is True,
        type=EntryType.parse(raw.get("type")),
        hourly_rate_cents=_pick_rate(raw.get("earnedRate"), raw.get("rate"), raw.get("hourlyRate")),
        cost_rate_cents=_rate_cents(raw.get("costRate")),
        interval=TimeInterval(
            start=parse_iso_utc(interval.get("start")),
            end=parse_iso_utc(interval.get("end")),
            duration_seconds=effective_duration_seconds(interval),
        ),
        description=str(raw.get("description") or ""),
    )


def normalize_entries(raws: Iterable[object]) -> list[TimeEntry]:
    entries: list[TimeEntry] = []
    for raw in raws:
        if not isinstance(raw, Mapping):
            logger.warning("Skipping time entry payload of type %s", type(raw).__name__)
            continue
        entries.append(normalize_entry(raw))
    return entries


def _working_day_name(value: object) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        # ISO weekday numbering, Monday = 1.
        return WEEKDAY_NAMES[value - 1] if 1 <= value <= 7 else None
    name = str(value).strip().upper()
    return name if name in WEEKDAY_NAMES else None


def normalize_profile(raw: Mapping) -> Profile:
    capacity: float | None = None
    hours = raw.get("workCapacityHours")
    if isinstance(hours, (int, float)) and not isinstance(hours, bool) and math.isfinite(hours) and hours >= 0:
        capacity = float(hours)
    else:
        seconds = parse_duration_seconds(raw.get("workCapacity"))
        if seconds is not None:
            capacity = seconds / 3600

    working_days: frozenset[str] | None = None
    raw_days = raw.get("workingDays")
    if isinstance(raw_days, (list, tuple, set, frozenset)):
        names = {_working_day_name(day) for day in raw_days}
        names.discard(None)
        working_days = frozenset(names)

    return Profile(work_capacity_hours=capacity, working_days=working_days)


def build_holiday_index(holidays: Iterable[Holiday], date_range: DateRange) -> dict[str, Holiday]:
    """Expand holiday periods into one record per calendar day inside the range."""
    index: dict[str, Holiday] = {}
    for holiday in holidays:
        start = parse_date_key(holiday.start_date)
        if start is None:
            continue
        end = parse_date_key(holiday.end_date) or start
        first = max(start, date_range.start)
        last = min(end, date_range.end)
        for day in iter_days(first, last):
            index.setdefault(day.isoformat(), holiday)
    return index
