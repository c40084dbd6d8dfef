from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import Executor, ProcessPoolExecutor
from dataclasses import dataclass

from .engine import compute_analysis
from .models import DateRange, PolicyContext, TimeEntry, UserAnalysis

WORKER_OFFLOAD_THRESHOLD = 500


def should_offload(entry_count: int, threshold: int = WORKER_OFFLOAD_THRESHOLD) -> bool:
    """Large datasets go to the worker; everything else is computed inline."""
    return entry_count > threshold


@dataclass(frozen=True, slots=True)
class CalculationTask:
    generation_id: int
    entries: tuple[TimeEntry, ...]
    context: PolicyContext
    date_range: DateRange


@dataclass(frozen=True, slots=True)
class CalculationResult:
    generation_id: int
    analysis: list[UserAnalysis]
    offloaded: bool = False


def run_calculation_task(task: CalculationTask) -> CalculationResult:
    # Shared by the inline and the worker strategy so both produce the same values.
    analysis = compute_analysis(task.entries, task.context, task.date_range)
    return CalculationResult(generation_id=task.generation_id, analysis=analysis)


def _default_executor() -> Executor:
    return ProcessPoolExecutor(max_workers=1)


class WorkerChannel:
    """Request/response channel to a worker process, opened on first use and kept for the session."""

    def __init__(
        self,
        executor_factory: Callable[[], Executor] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._executor_factory = executor_factory or _default_executor
        self._executor: Executor | None = None
        self.logger = logger or logging.getLogger(__name__)

    @property
    def is_open(self) -> bool:
        return self._executor is not None

    def _ensure_executor(self) -> Executor:
        if self._executor is None:
            self._executor = self._executor_factory()
            self.logger.info("Calculation worker started")
        return self._executor

    async def execute(self, task: CalculationTask) -> CalculationResult:
        executor = self._ensure_executor()
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, run_calculation_task, task)

    def shutdown(self) -> None:
        if self._executor is None:
            return
        self._executor.shutdown(wait=True)
        self._executor = None
        self.logger.info("Calculation worker stopped")

    async def aclose(self) -> None:
        """Shut the worker down from async code without blocking the event loop."""
        if self._executor is None:
            return
        await asyncio.to_thread(self.shutdown)


class CalculationDispatcher:
    def __init__(
        self,
        channel: WorkerChannel | None = None,
        threshold: int = WORKER_OFFLOAD_THRESHOLD,
        logger: logging.Logger | None = None,
    ) -> None:
        self.channel = channel or WorkerChannel()
        self.threshold = threshold
        self.logger = logger or logging.getLogger(__name__)

    async def dispatch(
        self,
        generation_id: int,
        entries: list[TimeEntry],
        context: PolicyContext,
        date_range: DateRange,
    ) -> CalculationResult:
        task = CalculationTask(
            generation_id=generation_id,
            entries=tuple(entries),
            context=context,
            date_range=date_range,
        )

        if not should_offload(len(entries), self.threshold):
            return run_calculation_task(task)

        self.logger.debug("Offloading %d entries for generation %s", len(entries), generation_id)
        result = await self.channel.execute(task)
        return CalculationResult(generation_id=result.generation_id, analysis=result.analysis, offloaded=True)
