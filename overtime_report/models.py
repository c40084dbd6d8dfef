from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class EntryType(str, Enum):
    REGULAR = "REGULAR"
    BREAK = "BREAK"
    TIME_OFF = "TIME_OFF"
    HOLIDAY = "HOLIDAY"

    @classmethod
    def parse(cls, value: object) -> EntryType:
        """Map a raw entry type to a member; anything unrecognized counts as REGULAR work."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.REGULAR

    @property
    def is_pto(self) -> bool:
        return self in (EntryType.TIME_OFF, EntryType.HOLIDAY)


class OvertimeBasis(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BOTH = "both"

    @property
    def uses_daily(self) -> bool:
        return self in (OvertimeBasis.DAILY, OvertimeBasis.BOTH)

    @property
    def uses_weekly(self) -> bool:
        return self in (OvertimeBasis.WEEKLY, OvertimeBasis.BOTH)


class AmountDisplay(str, Enum):
    EARNED = "earned"
    COST = "cost"
    PROFIT = "profit"


class OverrideMode(str, Enum):
    GLOBAL = "global"
    PER_DAY = "perDay"
    WEEKLY = "weekly"


@dataclass(frozen=True, slots=True)
class TimeInterval:
    start: datetime | None
    end: datetime | None
    duration_seconds: float


@dataclass(frozen=True, slots=True)
class TimeEntry:
    id: str
    user_id: str
    user_name: str
    billable: bool
    type: EntryType
    hourly_rate_cents: int
    interval: TimeInterval
    description: str = ""
    cost_rate_cents: int = 0

    @property
    def hours(self) -> float:
        return self.interval.duration_seconds / 3600

    @property
    def anchor(self) -> datetime | None:
        # Entries are bucketed by their start; the end is the fallback when the start is unusable.
        return self.interval.start or self.interval.end


@dataclass(frozen=True, slots=True)
class User:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class Profile:
    work_capacity_hours: float | None
    working_days: frozenset[str] | None


@dataclass(frozen=True, slots=True)
class Holiday:
    name: str
    start_date: str
    end_date: str


@dataclass(frozen=True, slots=True)
class TimeOffInfo:
    is_full_day: bool
    hours: float


@dataclass(frozen=True, slots=True)
class DayOverride:
    capacity: object = None
    multiplier: object = None


@dataclass(frozen=True, slots=True)
class OverrideConfig:
    mode: OverrideMode = OverrideMode.GLOBAL
    capacity: object = None
    multiplier: object = None
    per_day_overrides: dict[str, DayOverride] = field(default_factory=dict)
    weekly_overrides: dict[str, DayOverride] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CalcParams:
    daily_threshold: float = 8.0
    weekly_threshold: float = 40.0
    overtime_basis: OvertimeBasis = OvertimeBasis.DAILY
    overtime_multiplier: float = 1.5
    enable_tiered_ot: bool = False
    tier2_threshold_hours: float = 0.0
    tier2_multiplier: float = 2.0


@dataclass(frozen=True, slots=True)
class ReportOptions:
    apply_holidays: bool = False
    apply_time_off: bool = False
    use_profile_capacity: bool = False
    use_profile_working_days: bool = False


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date
    end: date

    @classmethod
    def parse(cls, start: str, end: str) -> DateRange:
        start_day = date.fromisoformat(start.strip())
        end_day = date.fromisoformat(end.strip())
        if end_day < start_day:
            raise ValueError(f"End date {end_day} is before start date {start_day}")
        return cls(start=start_day, end=end_day)

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True, slots=True)
class PolicyContext:
    """Everything the engine needs besides the entries themselves."""

    users: tuple[User, ...] = ()
    profiles: dict[str, Profile] = field(default_factory=dict)
    # user_id -> {date_key -> Holiday}; a missing user means the API returned nothing for them.
    holidays: dict[str, dict[str, Holiday]] = field(default_factory=dict)
    # user_id -> {date_key -> TimeOffInfo}; same convention as holidays.
    time_off: dict[str, dict[str, TimeOffInfo]] = field(default_factory=dict)
    overrides: dict[str, OverrideConfig] = field(default_factory=dict)
    options: ReportOptions = field(default_factory=ReportOptions)
    calc_params: CalcParams = field(default_factory=CalcParams)
    timezone: str = "UTC"


@dataclass(frozen=True, slots=True)
class DayMeta:
    capacity_hours: float
    multiplier: float
    is_working_day: bool = True
    is_holiday: bool = False
    holiday_name: str | None = None
    is_time_off: bool = False
    time_off_hours: float = 0.0
    capacity_source: str = "default"


@dataclass(frozen=True, slots=True)
class EntryAnalysis:
    regular: float
    daily_overtime: float = 0.0
    weekly_overtime: float = 0.0
    overlap_overtime: float = 0.0
    combined_overtime: float = 0.0
    overtime: float = 0.0
    billable: bool = False
    base_amount: float = 0.0
    overtime_amount: float = 0.0
    base_cost: float = 0.0
    overtime_cost: float = 0.0

    @property
    def base_profit(self) -> float:
        return self.base_amount - self.base_cost

    @property
    def overtime_profit(self) -> float:
        return self.overtime_amount - self.overtime_cost


@dataclass(frozen=True, slots=True)
class AnalyzedEntry:
    entry: TimeEntry
    analysis: EntryAnalysis


@dataclass(slots=True)
class DayBucket:
    date_key: str
    meta: DayMeta
    entries: list[AnalyzedEntry] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class UserTotals:
    regular: float = 0.0
    overtime: float = 0.0
    total: float = 0.0
    breaks: float = 0.0
    billable_worked: float = 0.0
    non_billable_worked: float = 0.0
    billable_ot: float = 0.0
    non_billable_ot: float = 0.0
    daily_overtime: float = 0.0
    weekly_overtime: float = 0.0
    overlap_overtime: float = 0.0
    combined_overtime: float = 0.0
    time_off_hours: float = 0.0
    vacation_entry_hours: float = 0.0
    expected_capacity: float = 0.0
    holiday_count: int = 0
    time_off_count: int = 0
    base_amount: float = 0.0
    overtime_amount: float = 0.0
    total_amount: float = 0.0
    base_cost: float = 0.0
    overtime_cost: float = 0.0
    total_cost: float = 0.0

    @property
    def total_profit(self) -> float:
        return self.total_amount - self.total_cost

    @property
    def overtime_profit(self) -> float:
        return self.overtime_amount - self.overtime_cost

    def amounts(self, display: AmountDisplay) -> tuple[float, float]:
        """Total and overtime portion for the chosen money view."""
        if display is AmountDisplay.COST:
            return self.total_cost, self.overtime_cost
        if display is AmountDisplay.PROFIT:
            return self.total_profit, self.overtime_profit
        return self.total_amount, self.overtime_amount


@dataclass(slots=True)
class UserAnalysis:
    user_id: str
    user_name: str
    days: dict[str, DayBucket] = field(default_factory=dict)
    totals: UserTotals = field(default_factory=UserTotals)
