from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = ("MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_utc(value: str | None) -> datetime | None:
    """Parse an ISO timestamp and normalize to UTC; None for anything unparseable."""
    if not value:
        return None

    text = str(value).strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            # Clockify timestamps are UTC; treat naive values the same way.
            return parsed.replace(tzinfo=timezone.utc)
        # Offsets near year 1 or 9999 can push the UTC value off the calendar.
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def local_day(moment: datetime, tz: ZoneInfo) -> date:
    if moment.tzinfo is None:
        raise ValueError("moment must be timezone-aware")
    return moment.astimezone(tz).date()


def iso_week_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def iter_days(start: date, end: date) -> list[date]:
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def parse_date_key(value: str | None) -> date | None:
    """Extract the calendar day from a date or datetime string."""
    if not value:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def range_bounds_utc(start: date, end: date, tz: ZoneInfo) -> tuple[str, str]:
    """Return the UTC ISO bounds covering local start-of-day to local end-of-day."""
    start_local = datetime.combine(start, time.min, tzinfo=tz)
    end_local = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz) - timedelta(milliseconds=1)
    return _format_utc(start_local), _format_utc(end_local)


def day_bounds_utc(start_key: str, end_key: str) -> tuple[str, str]:
    """Whole-day UTC bounds, as the holiday and time-off endpoints expect them."""
    return f"{start_key}T00:00:00.000Z", f"{end_key}T23:59:59.999Z"


def _format_utc(value: datetime) -> str:
    moment = value.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
