import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

from overtime_report.dispatcher import (
    CalculationDispatcher,
    CalculationTask,
    WorkerChannel,
    run_calculation_task,
    should_offload,
)
from overtime_report.engine import compute_analysis
from overtime_report.models import DateRange, EntryType, PolicyContext, TimeEntry, TimeInterval

RANGE = DateRange(start=date(2025, 1, 6), end=date(2025, 1, 12))


def make_entries(count: int) -> list[TimeEntry]:
    base = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)
    entries = []
    for index in range(count):
        start = base + timedelta(minutes=10 * index)
        entries.append(
            TimeEntry(
                id=f"e{index:04d}",
                user_id=f"u{index % 3}",
                user_name=f"User {index % 3}",
                billable=index % 2 == 0,
                type=EntryType.REGULAR,
                hourly_rate_cents=6000,
                interval=TimeInterval(start=start, end=start + timedelta(minutes=30), duration_seconds=1800),
            )
        )
    return entries


class CountingFactory:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return ThreadPoolExecutor(max_workers=1)


def test_offload_predicate_threshold() -> None:
    assert should_offload(0) is False
    assert should_offload(500) is False
    assert should_offload(501) is True
    assert should_offload(3, threshold=2) is True


def test_small_dataset_runs_inline_without_opening_worker() -> None:
    factory = CountingFactory()
    dispatcher = CalculationDispatcher(WorkerChannel(factory))

    result = asyncio.run(dispatcher.dispatch(7, make_entries(10), PolicyContext(), RANGE))

    assert result.generation_id == 7
    assert result.offloaded is False
    assert factory.calls == 0
    assert dispatcher.channel.is_open is False


def test_worker_channel_is_created_once_and_reused() -> None:
    factory = CountingFactory()
    channel = WorkerChannel(factory)
    dispatcher = CalculationDispatcher(channel, threshold=5)

    async def scenario():
        first = await dispatcher.dispatch(1, make_entries(6), PolicyContext(), RANGE)
        second = await dispatcher.dispatch(2, make_entries(8), PolicyContext(), RANGE)
        return first, second

    try:
        first, second = asyncio.run(scenario())
    finally:
        channel.shutdown()

    assert factory.calls == 1
    assert (first.generation_id, second.generation_id) == (1, 2)
    assert first.offloaded is True and second.offloaded is True
    assert channel.is_open is False


def test_worker_and_inline_results_match() -> None:
    entries = make_entries(40)
    context = PolicyContext(timezone="Europe/Berlin")
    channel = WorkerChannel(CountingFactory())

    async def scenario():
        inline = await CalculationDispatcher(channel, threshold=1000).dispatch(3, entries, context, RANGE)
        offloaded = await CalculationDispatcher(channel, threshold=10).dispatch(3, entries, context, RANGE)
        return inline, offloaded

    try:
        inline, offloaded = asyncio.run(scenario())
    finally:
        channel.shutdown()

    assert inline.analysis == offloaded.analysis
    assert inline.analysis == compute_analysis(entries, context, RANGE)


def test_process_worker_round_trip() -> None:
    entries = make_entries(12)
    channel = WorkerChannel()
    dispatcher = CalculationDispatcher(channel, threshold=10)

    try:
        result = asyncio.run(dispatcher.dispatch(9, entries, PolicyContext(), RANGE))
    finally:
        channel.shutdown()

    expected = run_calculation_task(CalculationTask(9, tuple(entries), PolicyContext(), RANGE))
    assert result.generation_id == 9
    assert result.offloaded is True
    assert result.analysis == expected.analysis


class RecordingExecutor(ThreadPoolExecutor):
    def __init__(self) -> None:
        super().__init__(max_workers=1)
        self.shutdown_threads: list[int] = []

    def shutdown(self, wait=True, **kwargs) -> None:
        self.shutdown_threads.append(threading.get_ident())
        super().shutdown(wait=wait, **kwargs)


def test_aclose_shuts_worker_down_off_the_event_loop() -> None:
    executor = RecordingExecutor()
    channel = WorkerChannel(lambda: executor)
    dispatcher = CalculationDispatcher(channel, threshold=1)

    async def scenario():
        await dispatcher.dispatch(4, make_entries(3), PolicyContext(), RANGE)
        loop_thread = threading.get_ident()
        await channel.aclose()
        return loop_thread

    loop_thread = asyncio.run(scenario())

    assert channel.is_open is False
    assert len(executor.shutdown_threads) == 1
    assert executor.shutdown_threads[0] != loop_thread


def test_aclose_without_worker_is_a_no_op() -> None:
    factory = CountingFactory()
    channel = WorkerChannel(factory)

    asyncio.run(channel.aclose())

    assert factory.calls == 0
    assert channel.is_open is False
