"""Lifecycle of the "generate report" action.

Each invocation becomes a numbered generation. Starting a new one aborts the
previous generation's fetches, and every asynchronous completion (the entries
fetch, the auxiliary profile/holiday/time-off batch, and the calculation result)
is checked against the current generation id before it may touch shared state.
Rendered state therefore always reflects the most recently started generation,
whatever order the responses arrive in.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol
from zoneinfo import ZoneInfo

from .cancellation import AbortSignal
from .dates import range_bounds_utc, utc_now
from .dispatcher import CalculationDispatcher
from .errors import AbortedOutcome, TransportFailure
from .models import (
    CalcParams,
    DateRange,
    Holiday,
    OverrideConfig,
    PolicyContext,
    Profile,
    ReportOptions,
    TimeEntry,
    TimeOffInfo,
    User,
    UserAnalysis,
)
from .normalizer import build_holiday_index, normalize_entries


class GenerationPhase(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    COMPUTING = "computing"
    RENDERED = "rendered"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(slots=True)
class Generation:
    id: int
    signal: AbortSignal
    created_at: datetime
    phase: GenerationPhase = GenerationPhase.PENDING


@dataclass(frozen=True, slots=True)
class ReportContext:
    workspace_id: str
    users: tuple[User, ...] = ()
    overrides: dict[str, OverrideConfig] = field(default_factory=dict)
    options: ReportOptions = field(default_factory=ReportOptions)
    calc_params: CalcParams = field(default_factory=CalcParams)
    timezone: str = "UTC"


@dataclass(slots=True)
class ReportState:
    """Shared result state; only the controller writes to it."""

    generation_id: int | None = None
    date_range: DateRange | None = None
    raw_entries: list[dict] | None = None
    entries: list[TimeEntry] | None = None
    profiles: dict[str, Profile] = field(default_factory=dict)
    holidays: dict[str, dict[str, Holiday]] = field(default_factory=dict)
    time_off: dict[str, dict[str, TimeOffInfo]] = field(default_factory=dict)
    analysis: list[UserAnalysis] | None = None


class Renderer(Protocol):
    async def render(self, analysis: list[UserAnalysis], date_range: DateRange) -> None: ...

    async def show_error(self, message: str) -> None: ...


class ReportApi(Protocol):
    async def fetch_detailed_report(self, workspace_id, start_iso, end_iso, *, signal=None) -> list[dict]: ...

    async def fetch_all_profiles(self, workspace_id, users, *, signal=None) -> dict[str, Profile]: ...

    async def fetch_all_holidays(self, workspace_id, users, start_date, end_date, *, signal=None) -> dict: ...

    async def fetch_all_time_off(self, workspace_id, users, start_date, end_date, *, signal=None) -> dict: ...


@dataclass(slots=True)
class _AuxiliaryData:
    profiles: dict[str, Profile] = field(default_factory=dict)
    holidays: dict[str, dict[str, Holiday]] = field(default_factory=dict)
    time_off: dict[str, dict[str, TimeOffInfo]] = field(default_factory=dict)


class RequestGenerationController:
    def __init__(
        self,
        api: ReportApi,
        dispatcher: CalculationDispatcher,
        renderer: Renderer,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api = api
        self.dispatcher = dispatcher
        self.renderer = renderer
        self.state = ReportState()
        self.logger = logger or logging.getLogger(__name__)

        self._counter = 0
        self._active: Generation | None = None

    @property
    def current_generation_id(self) -> int:
        return self._counter

    def begin_generation(self) -> Generation:
        previous = self._active
        self._counter += 1
        generation = Generation(id=self._counter, signal=AbortSignal(), created_at=utc_now())
        self._active = generation

        if previous is not None and previous.phase not in (GenerationPhase.RENDERED, GenerationPhase.FAILED):
            previous.signal.abort(f"superseded by generation {generation.id}")
            self.logger.debug("Generation %s superseded by %s", previous.id, generation.id)
        return generation

    def is_current(self, generation: Generation | int) -> bool:
        generation_id = generation.id if isinstance(generation, Generation) else generation
        return generation_id == self._counter

    def _discard(self, generation: Generation, what: str) -> Generation:
        self.logger.debug(
            "Discarding stale %s for generation %s (current %s)", what, generation.id, self._counter
        )
        generation.phase = GenerationPhase.ABORTED
        return generation

    async def generate_report(self, context: ReportContext, date_range: DateRange) -> Generation:
        generation = self.begin_generation()
        generation.phase = GenerationPhase.FETCHING
        start_iso, end_iso = range_bounds_utc(date_range.start, date_range.end, ZoneInfo(context.timezone))

        try:
            raw_entries = await self.api.fetch_detailed_report(
                context.workspace_id, start_iso, end_iso, signal=generation.signal
            )
        except AbortedOutcome:
            self.logger.debug("Entries fetch aborted for generation %s", generation.id)
            generation.phase = GenerationPhase.ABORTED
            return generation
        except TransportFailure as exc:
            if not self.is_current(generation):
                return self._discard(generation, "entries failure")
            self.logger.error("Entries fetch failed for generation %s: %s", generation.id, exc)
            generation.phase = GenerationPhase.FAILED
            await self.renderer.show_error(f"Could not load time entries: {exc}")
            return generation

        if not self.is_current(generation):
            return self._discard(generation, "entries")

        entries = normalize_entries(raw_entries)
        self.state.generation_id = generation.id
        self.state.date_range = date_range
        self.state.raw_entries = list(raw_entries)
        self.state.entries = entries
        self.state.analysis = None

        users = list(context.users) or _users_from_entries(entries)
        try:
            auxiliary = await self._fetch_auxiliary(context, users, date_range, generation)
        except AbortedOutcome:
            self.logger.debug("Auxiliary fetches aborted for generation %s", generation.id)
            generation.phase = GenerationPhase.ABORTED
            return generation

        if not self.is_current(generation):
            return self._discard(generation, "profiles/holidays/time-off")

        self.state.profiles = auxiliary.profiles
        self.state.holidays = auxiliary.holidays
        self.state.time_off = auxiliary.time_off

        generation.phase = GenerationPhase.COMPUTING
        policy = PolicyContext(
            users=tuple(users),
            profiles=auxiliary.profiles,
            holidays=auxiliary.holidays,
            time_off=auxiliary.time_off,
            overrides=dict(context.overrides),
            options=context.options,
            calc_params=context.calc_params,
            timezone=context.timezone,
        )
        try:
            result = await self.dispatcher.dispatch(generation.id, entries, policy, date_range)
        except Exception as exc:
            if not self.is_current(generation):
                return self._discard(generation, "calculation failure")
            self.logger.exception("Calculation failed for generation %s", generation.id)
            generation.phase = GenerationPhase.FAILED
            await self.renderer.show_error(f"Could not calculate the report: {exc}")
            return generation

        if not self.is_current(result.generation_id):
            return self._discard(generation, "calculation result")

        self.state.analysis = result.analysis
        await self.renderer.render(result.analysis, date_range)
        generation.phase = GenerationPhase.RENDERED
        self.logger.info(
            "Rendered generation %s: %d entries, %d users%s",
            generation.id,
            len(entries),
            len(result.analysis),
            " (worker)" if result.offloaded else "",
        )
        return generation

    async def _fetch_auxiliary(
        self,
        context: ReportContext,
        users: list[User],
        date_range: DateRange,
        generation: Generation,
    ) -> _AuxiliaryData:
        options = context.options
        signal = generation.signal
        start, end = date_range.start.isoformat(), date_range.end.isoformat()

        needs_profiles = options.use_profile_capacity or options.use_profile_working_days
        jobs = {}
        if needs_profiles:
            jobs["profiles"] = self.api.fetch_all_profiles(context.workspace_id, users, signal=signal)
        if options.apply_holidays:
            jobs["holidays"] = self.api.fetch_all_holidays(context.workspace_id, users, start, end, signal=signal)
        if options.apply_time_off:
            jobs["time-off"] = self.api.fetch_all_time_off(context.workspace_id, users, start, end, signal=signal)

        data = _AuxiliaryData()
        if not jobs:
            return data

        outcomes = await asyncio.gather(*jobs.values(), return_exceptions=True)
        results = dict(zip(jobs, outcomes))

        failed = set()
        for name, outcome in results.items():
            if isinstance(outcome, AbortedOutcome):
                raise outcome
            if isinstance(outcome, TransportFailure):
                self.logger.warning("Fetching %s failed for generation %s: %s", name, generation.id, outcome)
                failed.add(name)
            elif isinstance(outcome, BaseException):
                raise outcome

        # A failed batch degrades to "nothing on file" for every user rather than failing the report.
        if "profiles" in results and "profiles" not in failed:
            data.profiles = dict(results["profiles"])
        if "holidays" in failed:
            data.holidays = {user.id: {} for user in users}
        elif "holidays" in results:
            data.holidays = {
                user_id: build_holiday_index(holidays, date_range)
                for user_id, holidays in results["holidays"].items()
            }
        if "time-off" in failed:
            data.time_off = {user.id: {} for user in users}
        elif "time-off" in results:
            data.time_off = {user_id: dict(days) for user_id, days in results["time-off"].items()}
        return data


def _users_from_entries(entries: list[TimeEntry]) -> list[User]:
    seen: dict[str, str] = {}
    for entry in entries:
        if entry.user_id and entry.user_id not in seen:
            seen[entry.user_id] = entry.user_name
    return [User(id=user_id, name=name) for user_id, name in seen.items()]
