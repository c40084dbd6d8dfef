import asyncio

import pytest

from overtime_report.cancellation import AbortSignal, race_signal
from overtime_report.errors import AbortedOutcome


def test_without_signal_awaits_directly() -> None:
    async def work():
        return 42

    assert asyncio.run(race_signal(work(), None)) == 42


def test_result_returned_when_work_wins() -> None:
    async def scenario():
        signal = AbortSignal()
        result = await race_signal(asyncio.sleep(0, result="done"), signal)
        return result, signal.aborted

    assert asyncio.run(scenario()) == ("done", False)


def test_already_aborted_signal_never_starts_work() -> None:
    started = []

    async def work():
        started.append(True)

    async def scenario():
        signal = AbortSignal()
        signal.abort("superseded")
        with pytest.raises(AbortedOutcome, match="superseded"):
            await race_signal(work(), signal)

    asyncio.run(scenario())

    assert started == []


def test_abort_waits_for_cancelled_work_to_finish() -> None:
    cleaned_up = []

    async def slow_fetch():
        try:
            await asyncio.sleep(10)
        finally:
            cleaned_up.append(True)

    async def scenario():
        signal = AbortSignal()
        work = asyncio.ensure_future(slow_fetch())
        asyncio.get_running_loop().call_soon(signal.abort, "newer generation")

        with pytest.raises(AbortedOutcome) as excinfo:
            await race_signal(work, signal)

        # Checked before asyncio.run tears the loop down.
        return work.cancelled(), list(cleaned_up), excinfo.value.reason

    cancelled, cleaned, reason = asyncio.run(scenario())

    assert cancelled is True
    assert cleaned == [True]
    assert reason == "newer generation"
