from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date

from .dates import iso_week_key, weekday_name
from .models import DayOverride, OverrideConfig, OverrideMode, PolicyContext

MAX_DAILY_CAPACITY = 24.0


@dataclass(frozen=True, slots=True)
class DayPolicy:
    capacity: float
    multiplier: float
    is_working_day: bool
    source: str


def coerce_capacity(value: object) -> float | None:
    """Return a usable capacity in hours, or None when the value is missing or out of range."""
    number = _coerce_number(value)
    if number is None or number > MAX_DAILY_CAPACITY:
        return None
    return number


def coerce_multiplier(value: object) -> float | None:
    return _coerce_number(value)


def _coerce_number(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


class OverrideResolver:
    """Resolves the effective daily capacity and overtime multiplier for a (user, date) pair.

    Precedence, highest first: a per-day override, a weekly override, the user's own
    override values, the member profile, and finally the configured daily threshold.
    Non-working days (per the member profile) resolve to zero capacity unless a per-day
    override names that date explicitly.
    """

    def __init__(self, context: PolicyContext) -> None:
        self.context = context

    def resolve(self, user_id: str, day: date) -> DayPolicy:
        override = self.context.overrides.get(user_id)
        dated = self._dated_override(override, day)

        capacity, source = self._resolve_capacity(user_id, override, dated)
        multiplier = self._resolve_multiplier(override, dated)

        is_working_day = self._is_working_day(user_id, day)
        if not is_working_day and source != "per_day":
            capacity = 0.0

        return DayPolicy(capacity=capacity, multiplier=multiplier, is_working_day=is_working_day, source=source)

    def _dated_override(self, override: OverrideConfig | None, day: date) -> tuple[DayOverride, str] | None:
        if override is None:
            return None
        if override.mode == OverrideMode.PER_DAY:
            entry = override.per_day_overrides.get(day.isoformat())
            return (entry, "per_day") if entry is not None else None
        if override.mode == OverrideMode.WEEKLY:
            entry = override.weekly_overrides.get(iso_week_key(day))
            return (entry, "weekly") if entry is not None else None
        return None

    def _resolve_capacity(
        self,
        user_id: str,
        override: OverrideConfig | None,
        dated: tuple[DayOverride, str] | None,
    ) -> tuple[float, str]:
        if dated is not None:
            entry, source = dated
            capacity = coerce_capacity(entry.capacity)
            if capacity is not None:
                return capacity, source

        if override is not None:
            capacity = coerce_capacity(override.capacity)
            if capacity is not None:
                return capacity, "global"

        if self.context.options.use_profile_capacity:
            profile = self.context.profiles.get(user_id)
            if profile is not None and profile.work_capacity_hours is not None:
                return profile.work_capacity_hours, "profile"

        return float(self.context.calc_params.daily_threshold), "default"

    def _resolve_multiplier(self, override: OverrideConfig | None, dated: tuple[DayOverride, str] | None) -> float:
        if dated is not None:
            multiplier = coerce_multiplier(dated[0].multiplier)
            if multiplier is not None:
                return multiplier

        if override is not None:
            multiplier = coerce_multiplier(override.multiplier)
            if multiplier is not None:
                return multiplier

        return float(self.context.calc_params.overtime_multiplier)

    def _is_working_day(self, user_id: str, day: date) -> bool:
        if not self.context.options.use_profile_working_days:
            return True
        profile = self.context.profiles.get(user_id)
        if profile is None or not profile.working_days:
            return True
        return weekday_name(day) in profile.working_days

    def user_ids_with_overrides(self) -> list[str]:
        return sorted(self.context.overrides)

    def describe(self, user_id: str) -> str:
        override = self.context.overrides.get(user_id)
        if override is None:
            return "no override"

        parts = [f"mode={override.mode.value}"]
        capacity = coerce_capacity(override.capacity)
        if capacity is not None:
            parts.append(f"capacity={capacity:g}h")
        multiplier = coerce_multiplier(override.multiplier)
        if multiplier is not None:
            parts.append(f"multiplier={multiplier:g}x")
        if override.mode == OverrideMode.PER_DAY and override.per_day_overrides:
            parts.append(f"{len(override.per_day_overrides)} dated")
        if override.mode == OverrideMode.WEEKLY and override.weekly_overrides:
            parts.append(f"{len(override.weekly_overrides)} weekly")
        return ", ".join(parts)
