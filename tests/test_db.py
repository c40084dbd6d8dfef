import pytest

from overtime_report.db import Database
from overtime_report.models import DayOverride, OverrideConfig, OverrideMode


def make_db() -> Database:
    db = Database(":memory:")
    db.initialize()
    return db


def test_global_override_round_trip() -> None:
    db = make_db()
    db.set_user_override("u1", OverrideMode.GLOBAL, capacity=6, multiplier=2)

    assert db.load_overrides() == {"u1": OverrideConfig(mode=OverrideMode.GLOBAL, capacity=6, multiplier=2)}


def test_partial_update_keeps_other_value() -> None:
    db = make_db()
    db.set_user_override("u1", OverrideMode.GLOBAL, capacity=6)
    db.set_user_override("u1", OverrideMode.GLOBAL, multiplier=1.75)

    override = db.load_overrides()["u1"]
    assert override.capacity == 6
    assert override.multiplier == 1.75


def test_dated_overrides_switch_mode_and_keep_user_values() -> None:
    db = make_db()
    db.set_user_override("u1", OverrideMode.GLOBAL, capacity=7)
    db.set_dated_override("u1", OverrideMode.PER_DAY, "2025-01-06", capacity=4)
    db.set_dated_override("u1", OverrideMode.PER_DAY, "2025-01-06", capacity=5, multiplier=2)
    db.set_dated_override("u2", OverrideMode.WEEKLY, "2025-W02", capacity=30)

    overrides = db.load_overrides()

    assert overrides["u1"].mode == OverrideMode.PER_DAY
    assert overrides["u1"].capacity == 7
    assert overrides["u1"].per_day_overrides == {"2025-01-06": DayOverride(capacity=5, multiplier=2)}
    assert overrides["u2"].mode == OverrideMode.WEEKLY
    assert overrides["u2"].weekly_overrides == {"2025-W02": DayOverride(capacity=30, multiplier=None)}


def test_dated_override_needs_dated_mode() -> None:
    db = make_db()

    with pytest.raises(ValueError):
        db.set_dated_override("u1", OverrideMode.GLOBAL, "2025-01-06", capacity=4)


def test_delete_override() -> None:
    db = make_db()
    db.set_dated_override("u1", OverrideMode.PER_DAY, "2025-01-06", capacity=4)

    assert db.delete_override("u1") is True
    assert db.load_overrides() == {}
    assert db.delete_override("u1") is False


def test_meta_round_trip_and_close_twice() -> None:
    db = make_db()
    assert db.get_meta("users_refreshed_at") is None

    db.set_meta("users_refreshed_at", "2025-01-06T00:00:00+00:00")
    db.set_meta("users_refreshed_at", "2025-01-07T00:00:00+00:00")

    assert db.get_meta("users_refreshed_at") == "2025-01-07T00:00:00+00:00"
    db.close()
    db.close()
