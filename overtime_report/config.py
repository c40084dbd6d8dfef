from __future__ import annotations

import math
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .api import DEFAULT_BASE_URL
from .dispatcher import WORKER_OFFLOAD_THRESHOLD
from .models import AmountDisplay, CalcParams, OvertimeBasis, ReportOptions

DEFAULT_DB_PATH = "overtime_report.db"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True, slots=True)
class Config:
    discord_token: str
    guild_id: int
    report_channel_id: int
    clockify_api_key: str
    clockify_workspace_id: str
    timezone: ZoneInfo
    clockify_base_url: str = DEFAULT_BASE_URL
    clockify_reports_url: str | None = None
    daily_threshold_hours: float = 8.0
    weekly_threshold_hours: float = 40.0
    overtime_basis: OvertimeBasis = OvertimeBasis.DAILY
    overtime_multiplier: float = 1.5
    enable_tiered_ot: bool = False
    tier2_threshold_hours: float = 0.0
    tier2_multiplier: float = 2.0
    apply_holidays: bool = False
    apply_time_off: bool = False
    use_profile_capacity: bool = False
    use_profile_working_days: bool = False
    amount_display: AmountDisplay = AmountDisplay.EARNED
    worker_offload_threshold: int = WORKER_OFFLOAD_THRESHOLD
    database_path: Path = Path(DEFAULT_DB_PATH)

    def calc_params(self) -> CalcParams:
        return CalcParams(
            daily_threshold=self.daily_threshold_hours,
            weekly_threshold=self.weekly_threshold_hours,
            overtime_basis=self.overtime_basis,
            overtime_multiplier=self.overtime_multiplier,
            enable_tiered_ot=self.enable_tiered_ot,
            tier2_threshold_hours=self.tier2_threshold_hours,
            tier2_multiplier=self.tier2_multiplier,
        )

    def report_options(self) -> ReportOptions:
        return ReportOptions(
            apply_holidays=self.apply_holidays,
            apply_time_off=self.apply_time_off,
            use_profile_capacity=self.use_profile_capacity,
            use_profile_working_days=self.use_profile_working_days,
        )


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value or not value.strip():
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _required_int_env(name: str) -> int:
    value = _required_env(name)
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = _required_env(name)
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _float_env(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number") from exc

    if not math.isfinite(parsed) or parsed < minimum:
        raise ValueError(f"Environment variable {name} must be a finite number >= {minimum:g}")
    return parsed


def _int_env(name: str, default: int) -> int:
    raw = _optional_env(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed < 0:
        raise ValueError(f"Environment variable {name} must not be negative")
    return parsed


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"Environment variable {name} must be a boolean (true/false)")


def _choice_env(name: str, choices: type[Enum], default: Enum):
    raw = (_optional_env(name) or default.value).lower()
    try:
        return choices(raw)
    except ValueError as exc:
        allowed = ", ".join(choice.value for choice in choices)
        raise ValueError(f"Environment variable {name} must be one of: {allowed}") from exc


def load_config() -> Config:
    return Config(
        discord_token=_required_env("DISCORD_TOKEN"),
        guild_id=_required_int_env("GUILD_ID"),
        report_channel_id=_required_int_env("REPORT_CHANNEL_ID"),
        clockify_api_key=_required_env("CLOCKIFY_API_KEY"),
        clockify_workspace_id=_required_env("CLOCKIFY_WORKSPACE_ID"),
        timezone=_timezone_from_env("TIMEZONE"),
        clockify_base_url=_optional_env("CLOCKIFY_BASE_URL") or DEFAULT_BASE_URL,
        clockify_reports_url=_optional_env("CLOCKIFY_REPORTS_URL"),
        daily_threshold_hours=_float_env("DAILY_THRESHOLD_HOURS", 8.0),
        weekly_threshold_hours=_float_env("WEEKLY_THRESHOLD_HOURS", 40.0),
        overtime_basis=_choice_env("OVERTIME_BASIS", OvertimeBasis, OvertimeBasis.DAILY),
        overtime_multiplier=_float_env("OVERTIME_MULTIPLIER", 1.5, minimum=1.0),
        enable_tiered_ot=_bool_env("ENABLE_TIERED_OT"),
        tier2_threshold_hours=_float_env("TIER2_THRESHOLD_HOURS", 0.0),
        tier2_multiplier=_float_env("TIER2_MULTIPLIER", 2.0, minimum=1.0),
        apply_holidays=_bool_env("APPLY_HOLIDAYS"),
        apply_time_off=_bool_env("APPLY_TIME_OFF"),
        use_profile_capacity=_bool_env("USE_PROFILE_CAPACITY"),
        use_profile_working_days=_bool_env("USE_PROFILE_WORKING_DAYS"),
        amount_display=_choice_env("AMOUNT_DISPLAY", AmountDisplay, AmountDisplay.EARNED),
        worker_offload_threshold=_int_env("WORKER_OFFLOAD_THRESHOLD", WORKER_OFFLOAD_THRESHOLD),
        database_path=Path(_optional_env("DATABASE_PATH") or DEFAULT_DB_PATH),
    )
