"""Tests for schedulers and the debouncer."""

import asyncio

import pytest

from canvas_backend.scheduler import Debouncer, LoopScheduler


class TestDebouncer:
    def test_restarts_delay(self, scheduler) -> None:
        calls = []
        debouncer = Debouncer(scheduler, 0.5, lambda: calls.append(scheduler.now))

        debouncer.schedule()
        scheduler.advance(0.4)
        debouncer.schedule()
        scheduler.advance(0.4)
        assert calls == []

        scheduler.advance(0.1)
        assert calls == [pytest.approx(0.9)]
        assert not debouncer.pending

    def test_flush_and_cancel(self, scheduler) -> None:
        calls = []
        debouncer = Debouncer(scheduler, 0.5, lambda: calls.append("run"))

        assert debouncer.flush() is False
        debouncer.schedule()
        assert debouncer.flush() is True
        assert calls == ["run"]

        debouncer.schedule()
        debouncer.cancel()
        scheduler.advance(1)
        assert calls == ["run"]
        assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_loop_scheduler_coalesces_calls() -> None:
    calls = []
    debouncer = Debouncer(LoopScheduler(), 0.02, lambda: calls.append("run"))

    for _ in range(5):
        debouncer.schedule()
        await asyncio.sleep(0.001)
    await asyncio.sleep(0.1)

    assert calls == ["run"]
