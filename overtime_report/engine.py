"""Overtime analysis: turns normalized time entries into per-user, per-day results.

Days are processed in chronological order and entries within a day by start time
(then id), so every entry is measured against the hours logged before it. When
several entries straddle the daily and weekly thresholds on one day, the overlap
between the two rules is attributed chronologically in the same way.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date
from zoneinfo import ZoneInfo

from .dates import iso_week_key, local_day
from .models import (
    AnalyzedEntry,
    CalcParams,
    DateRange,
    DayBucket,
    DayMeta,
    EntryAnalysis,
    EntryType,
    OvertimeBasis,
    PolicyContext,
    TimeEntry,
    UserAnalysis,
    UserTotals,
)
from .overrides import OverrideResolver

_SUMMED_FIELDS = (
    "regular",
    "overtime",
    "breaks",
    "billable_worked",
    "non_billable_worked",
    "billable_ot",
    "non_billable_ot",
    "daily_overtime",
    "weekly_overtime",
    "overlap_overtime",
    "combined_overtime",
    "time_off_hours",
    "vacation_entry_hours",
    "expected_capacity",
    "base_amount",
    "overtime_amount",
    "base_cost",
    "overtime_cost",
)


class OvertimeAnalysisEngine:
    def __init__(self, context: PolicyContext, logger: logging.Logger | None = None) -> None:
        self.context = context
        self.resolver = OverrideResolver(context)
        self.tz = ZoneInfo(context.timezone)
        self.logger = logger or logging.getLogger(__name__)

    def analyze(self, entries: Iterable[TimeEntry], date_range: DateRange) -> list[UserAnalysis]:
        grouped, names = self._group_entries(entries, date_range)

        ordered: dict[str, str] = {user.id: user.name for user in self.context.users}
        for user_id, name in names.items():
            if not ordered.get(user_id):
                ordered[user_id] = name

        return [
            self._analyze_user(user_id, name, grouped.get(user_id, {}))
            for user_id, name in ordered.items()
        ]

    def _group_entries(
        self,
        entries: Iterable[TimeEntry],
        date_range: DateRange,
    ) -> tuple[dict[str, dict[date, list[TimeEntry]]], dict[str, str]]:
        grouped: dict[str, dict[date, list[TimeEntry]]] = {}
        names: dict[str, str] = {}

        dated = []
        for entry in entries:
            if entry.anchor is None:
                self.logger.warning("Skipping entry %s for user %s: no usable timestamps", entry.id, entry.user_id)
                continue
            dated.append(entry)

        dated.sort(key=lambda item: (item.anchor, item.id))
        for entry in dated:
            try:
                day = local_day(entry.anchor, self.tz)
            except OverflowError:
                self.logger.warning(
                    "Skipping entry %s for user %s: start is outside the calendar", entry.id, entry.user_id
                )
                continue
            if not date_range.contains(day):
                self.logger.debug("Ignoring entry %s outside %s..%s", entry.id, date_range.start, date_range.end)
                continue
            if not names.get(entry.user_id):
                names[entry.user_id] = entry.user_name
            grouped.setdefault(entry.user_id, {}).setdefault(day, []).append(entry)

        return grouped, names

    def _analyze_user(self, user_id: str, user_name: str, days: dict[date, list[TimeEntry]]) -> UserAnalysis:
        result = UserAnalysis(user_id=user_id, user_name=user_name)
        params = self.context.calc_params
        week_worked: dict[str, float] = {}
        cumulative_ot = 0.0

        for day in sorted(days):
            day_entries = days[day]
            # Capacity is fixed here, before any entry of the day is looked at.
            meta = self._prepare_day(user_id, day, day_entries)
            bucket = DayBucket(date_key=day.isoformat(), meta=meta)
            week = iso_week_key(day)
            day_worked = 0.0

            for entry in day_entries:
                analysis, day_worked, worked_this_week = _analyze_entry(
                    entry, meta, params, day_worked, week_worked.get(week, 0.0)
                )
                week_worked[week] = worked_this_week
                analysis, cumulative_ot = _with_amounts(entry, analysis, meta, params, cumulative_ot)
                bucket.entries.append(AnalyzedEntry(entry=entry, analysis=analysis))

            result.days[bucket.date_key] = bucket

        result.totals = fold_totals(result.days.values())
        return result

    def _prepare_day(self, user_id: str, day: date, entries: list[TimeEntry]) -> DayMeta:
        policy = self.resolver.resolve(user_id, day)
        options = self.context.options
        key = day.isoformat()
        capacity = policy.capacity

        is_holiday = False
        holiday_name = None
        if options.apply_holidays:
            user_holidays = self.context.holidays.get(user_id)
            if user_holidays is not None:
                holiday = user_holidays.get(key)
                if holiday is not None:
                    is_holiday, holiday_name = True, holiday.name
            else:
                # No holiday data for this user at all: fall back to HOLIDAY entries.
                marker = next((entry for entry in entries if entry.type is EntryType.HOLIDAY), None)
                if marker is not None:
                    is_holiday, holiday_name = True, marker.description or "Holiday"
            if is_holiday:
                capacity = 0.0

        is_time_off = False
        time_off_hours = 0.0
        if options.apply_time_off:
            requested = None
            user_time_off = self.context.time_off.get(user_id)
            if user_time_off is not None:
                info = user_time_off.get(key)
                if info is not None:
                    requested = capacity if info.is_full_day else info.hours
            else:
                pto = [entry.hours for entry in entries if entry.type is EntryType.TIME_OFF]
                if pto:
                    requested = sum(pto)
            if requested is not None:
                time_off_hours = min(capacity, max(0.0, requested))
                capacity -= time_off_hours
                is_time_off = True

        return DayMeta(
            capacity_hours=capacity,
            multiplier=policy.multiplier,
            is_working_day=policy.is_working_day,
            is_holiday=is_holiday,
            holiday_name=holiday_name,
            is_time_off=is_time_off,
            time_off_hours=time_off_hours,
            capacity_source=policy.source,
        )


def _analyze_entry(
    entry: TimeEntry,
    meta: DayMeta,
    params: CalcParams,
    day_worked: float,
    week_worked: float,
) -> tuple[EntryAnalysis, float, float]:
    hours = entry.hours

    if entry.type.is_pto:
        # Paid time off is informational: regular hours that never count toward thresholds.
        return EntryAnalysis(regular=hours, billable=entry.billable), day_worked, week_worked

    if entry.type is EntryType.BREAK:
        return EntryAnalysis(regular=hours, billable=entry.billable), day_worked + hours, week_worked

    # REGULAR, and any type EntryType.parse could not recognize.
    basis = params.overtime_basis
    capacity = meta.capacity_hours

    daily = 0.0
    if basis.uses_daily:
        daily = min(hours, max(0.0, day_worked + hours - capacity))

    weekly = 0.0
    if basis.uses_weekly:
        if capacity <= 0:
            weekly = hours
        else:
            weekly = min(hours, max(0.0, week_worked + hours - params.weekly_threshold))

    overlap = min(daily, weekly) if basis is OvertimeBasis.BOTH else 0.0
    combined = daily + weekly - overlap

    analysis = EntryAnalysis(
        regular=hours - combined,
        daily_overtime=daily,
        weekly_overtime=weekly,
        overlap_overtime=overlap,
        combined_overtime=combined,
        overtime=combined,
        billable=entry.billable,
    )
    return analysis, day_worked + hours, week_worked + hours


def _with_amounts(
    entry: TimeEntry,
    analysis: EntryAnalysis,
    meta: DayMeta,
    params: CalcParams,
    cumulative_ot: float,
) -> tuple[EntryAnalysis, float]:
    overtime = analysis.overtime
    earned_cents = entry.hourly_rate_cents if entry.billable else 0
    # Cost is incurred whether or not the client is billed.
    cost_cents = entry.cost_rate_cents
    if earned_cents <= 0 and cost_cents <= 0:
        return analysis, cumulative_ot + overtime

    if params.enable_tiered_ot:
        tier1 = min(overtime, max(0.0, params.tier2_threshold_hours - cumulative_ot))
        weighted_ot = tier1 * meta.multiplier + (overtime - tier1) * params.tier2_multiplier
    else:
        weighted_ot = overtime * meta.multiplier

    rate = max(0, earned_cents) / 100
    cost_rate = max(0, cost_cents) / 100
    priced = EntryAnalysis(
        regular=analysis.regular,
        daily_overtime=analysis.daily_overtime,
        weekly_overtime=analysis.weekly_overtime,
        overlap_overtime=analysis.overlap_overtime,
        combined_overtime=analysis.combined_overtime,
        overtime=overtime,
        billable=analysis.billable,
        base_amount=rate * analysis.regular,
        overtime_amount=rate * weighted_ot,
        base_cost=cost_rate * analysis.regular,
        overtime_cost=cost_rate * weighted_ot,
    )
    return priced, cumulative_ot + overtime


def fold_totals(days: Iterable[DayBucket]) -> UserTotals:
    sums = dict.fromkeys(_SUMMED_FIELDS, 0.0)
    holiday_count = 0
    time_off_count = 0

    for bucket in days:
        meta = bucket.meta
        sums["expected_capacity"] += meta.capacity_hours
        sums["time_off_hours"] += meta.time_off_hours
        holiday_count += int(meta.is_holiday)
        time_off_count += int(meta.is_time_off)

        for item in bucket.entries:
            analysis = item.analysis
            sums["regular"] += analysis.regular
            sums["overtime"] += analysis.overtime
            sums["daily_overtime"] += analysis.daily_overtime
            sums["weekly_overtime"] += analysis.weekly_overtime
            sums["overlap_overtime"] += analysis.overlap_overtime
            sums["combined_overtime"] += analysis.combined_overtime
            sums["base_amount"] += analysis.base_amount
            sums["overtime_amount"] += analysis.overtime_amount
            sums["base_cost"] += analysis.base_cost
            sums["overtime_cost"] += analysis.overtime_cost

            if analysis.billable:
                sums["billable_worked"] += analysis.regular
                sums["billable_ot"] += analysis.overtime
            else:
                sums["non_billable_worked"] += analysis.regular
                sums["non_billable_ot"] += analysis.overtime

            if item.entry.type is EntryType.BREAK:
                sums["breaks"] += item.entry.hours
            elif item.entry.type.is_pto:
                sums["vacation_entry_hours"] += item.entry.hours

    return UserTotals(
        **sums,
        total=sums["regular"] + sums["overtime"],
        holiday_count=holiday_count,
        time_off_count=time_off_count,
        total_amount=sums["base_amount"] + sums["overtime_amount"],
        total_cost=sums["base_cost"] + sums["overtime_cost"],
    )


def compute_analysis(entries: Iterable[TimeEntry], context: PolicyContext, date_range: DateRange) -> list[UserAnalysis]:
    """Pure entry point: identical inputs always produce equal results."""
    return OvertimeAnalysisEngine(context).analyze(entries, date_range)
