from pathlib import Path

import pytest

from overtime_report.config import load_config
from overtime_report.models import AmountDisplay, OvertimeBasis

REQUIRED = {
    "DISCORD_TOKEN": "token",
    "GUILD_ID": "123",
    "REPORT_CHANNEL_ID": "456",
    "CLOCKIFY_API_KEY": "key",
    "CLOCKIFY_WORKSPACE_ID": "ws",
    "TIMEZONE": "Europe/Berlin",
}
OPTIONAL = (
    "CLOCKIFY_BASE_URL",
    "CLOCKIFY_REPORTS_URL",
    "DAILY_THRESHOLD_HOURS",
    "WEEKLY_THRESHOLD_HOURS",
    "OVERTIME_BASIS",
    "OVERTIME_MULTIPLIER",
    "ENABLE_TIERED_OT",
    "TIER2_THRESHOLD_HOURS",
    "TIER2_MULTIPLIER",
    "APPLY_HOLIDAYS",
    "APPLY_TIME_OFF",
    "USE_PROFILE_CAPACITY",
    "USE_PROFILE_WORKING_DAYS",
    "AMOUNT_DISPLAY",
    "WORKER_OFFLOAD_THRESHOLD",
    "DATABASE_PATH",
)


@pytest.fixture
def env(monkeypatch):
    for name in OPTIONAL:
        monkeypatch.delenv(name, raising=False)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


def test_defaults(env) -> None:
    config = load_config()

    assert config.guild_id == 123
    assert config.timezone.key == "Europe/Berlin"
    assert config.clockify_base_url == "https://api.clockify.me/api"
    assert config.clockify_reports_url is None
    assert config.worker_offload_threshold == 500
    assert config.database_path == Path("overtime_report.db")

    params = config.calc_params()
    assert params.daily_threshold == 8
    assert params.weekly_threshold == 40
    assert params.overtime_basis is OvertimeBasis.DAILY
    assert params.overtime_multiplier == 1.5
    assert config.report_options().apply_holidays is False
    assert config.amount_display is AmountDisplay.EARNED


def test_optional_values(env) -> None:
    env.setenv("OVERTIME_BASIS", "Both")
    env.setenv("DAILY_THRESHOLD_HOURS", "7.5")
    env.setenv("APPLY_TIME_OFF", "yes")
    env.setenv("ENABLE_TIERED_OT", "1")
    env.setenv("WORKER_OFFLOAD_THRESHOLD", "50")
    env.setenv("AMOUNT_DISPLAY", "PROFIT")

    config = load_config()

    assert config.calc_params().overtime_basis is OvertimeBasis.BOTH
    assert config.calc_params().daily_threshold == 7.5
    assert config.calc_params().enable_tiered_ot is True
    assert config.report_options().apply_time_off is True
    assert config.worker_offload_threshold == 50
    assert config.amount_display is AmountDisplay.PROFIT


def test_missing_required_variable(env) -> None:
    env.delenv("CLOCKIFY_API_KEY")

    with pytest.raises(ValueError, match="CLOCKIFY_API_KEY"):
        load_config()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TIMEZONE", "Mars/Olympus"),
        ("GUILD_ID", "abc"),
        ("OVERTIME_BASIS", "monthly"),
        ("APPLY_HOLIDAYS", "maybe"),
        ("OVERTIME_MULTIPLIER", "0.5"),
        ("DAILY_THRESHOLD_HOURS", "-1"),
        ("AMOUNT_DISPLAY", "margin"),
    ],
)
def test_invalid_values_raise(env, name, value) -> None:
    env.setenv(name, value)

    with pytest.raises(ValueError):
        load_config()
