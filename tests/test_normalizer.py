from datetime import date, datetime, timezone

from overtime_report.models import DateRange, EntryType, Holiday
from overtime_report.normalizer import (
    build_holiday_index,
    normalize_entries,
    normalize_entry,
    normalize_profile,
    parse_duration_seconds,
)


def test_parse_duration_accepts_iso_periods_and_seconds() -> None:
    assert parse_duration_seconds("PT1H30M") == 5400
    assert parse_duration_seconds("P1DT2H") == 93600
    assert parse_duration_seconds("PT45S") == 45
    assert parse_duration_seconds(3600) == 3600
    assert parse_duration_seconds("7200") == 7200


def test_parse_duration_rejects_garbage() -> None:
    assert parse_duration_seconds(None) is None
    assert parse_duration_seconds("") is None
    assert parse_duration_seconds("P") is None
    assert parse_duration_seconds("soon") is None
    assert parse_duration_seconds(-5) is None
    assert parse_duration_seconds(True) is None


def test_normalize_entry_reads_clockify_payload() -> None:
    entry = normalize_entry(
        {
            "id": "e1",
            "userId": "u1",
            "userName": "Ann",
            "billable": True,
            "type": "BREAK",
            "description": "lunch",
            "timeInterval": {
                "start": "2025-01-06T12:00:00Z",
                "end": "2025-01-06T12:30:00Z",
                "duration": "PT30M",
            },
            "hourlyRate": {"amount": 5000},
        }
    )

    assert entry.id == "e1"
    assert entry.user_id == "u1"
    assert entry.type is EntryType.BREAK
    assert entry.billable is True
    assert entry.hourly_rate_cents == 5000
    assert entry.hours == 0.5
    assert entry.interval.start == datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
    assert entry.description == "lunch"


def test_duration_falls_back_to_timestamps() -> None:
    entry = normalize_entry(
        {"id": "e1", "timeInterval": {"start": "2025-01-06T09:00:00Z", "end": "2025-01-06T11:15:00Z"}}
    )

    assert entry.interval.duration_seconds == 8100


def test_unparseable_end_yields_zero_duration() -> None:
    entry = normalize_entry(
        {"id": "e1", "timeInterval": {"start": "2025-01-06T09:00:00Z", "end": "not-a-date", "duration": "PT8H"}}
    )

    assert entry.interval.duration_seconds == 0
    assert entry.interval.end is None


def test_running_entry_without_end_yields_zero_duration() -> None:
    entry = normalize_entry({"id": "e1", "timeInterval": {"start": "2025-01-06T09:00:00Z", "end": None}})

    assert entry.hours == 0


def test_unknown_type_counts_as_regular_and_billable_must_be_true() -> None:
    entry = normalize_entry({"id": "e1", "type": "MEETING", "billable": "yes"})

    assert entry.type is EntryType.REGULAR
    assert entry.billable is False


def test_earned_rate_wins_over_hourly_rate() -> None:
    entry = normalize_entry({"id": "e1", "earnedRate": 7500, "hourlyRate": {"amount": 5000}})

    assert entry.hourly_rate_cents == 7500


def test_cost_rate_read_separately_from_earned_rate() -> None:
    entry = normalize_entry({"id": "e1", "earnedRate": 7500, "costRate": {"amount": 3000}})

    assert entry.hourly_rate_cents == 7500
    assert entry.cost_rate_cents == 3000
    assert normalize_entry({"id": "e2"}).cost_rate_cents == 0


def test_end_offset_before_year_one_yields_zero_duration() -> None:
    entry = normalize_entry(
        {
            "id": "e1",
            "timeInterval": {"start": "2025-01-06T09:00:00Z", "end": "0001-01-01T00:30:00+01:00", "duration": "PT1H"},
        }
    )

    assert entry.interval.end is None
    assert entry.interval.duration_seconds == 0


def test_normalize_entries_skips_non_mappings() -> None:
    entries = normalize_entries([{"id": "e1"}, "junk", None, {"id": "e2"}])

    assert [entry.id for entry in entries] == ["e1", "e2"]


def test_normalize_profile_from_duration_and_day_numbers() -> None:
    profile = normalize_profile({"workCapacity": "PT7H30M", "workingDays": ["MONDAY", 2, "funday", 9]})

    assert profile.work_capacity_hours == 7.5
    assert profile.working_days == frozenset({"MONDAY", "TUESDAY"})


def test_normalize_profile_without_data() -> None:
    profile = normalize_profile({})

    assert profile.work_capacity_hours is None
    assert profile.working_days is None


def test_holiday_index_expands_periods_inside_range() -> None:
    date_range = DateRange(start=date(2025, 1, 6), end=date(2025, 1, 8))
    index = build_holiday_index(
        [
            Holiday(name="Long weekend", start_date="2025-01-04", end_date="2025-01-06"),
            Holiday(name="Midweek", start_date="2025-01-08T00:00:00Z", end_date=""),
            Holiday(name="Broken", start_date="", end_date=""),
        ],
        date_range,
    )

    assert sorted(index) == ["2025-01-06", "2025-01-08"]
    assert index["2025-01-06"].name == "Long weekend"
    assert index["2025-01-08"].name == "Midweek"
