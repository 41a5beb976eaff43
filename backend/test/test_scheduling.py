"""PeriodicTask / DelayedTask 테스트."""

import asyncio

import pytest

from voice_mesh.shared.scheduling import DelayedTask, PeriodicTask, call_maybe_async


class TestPeriodicTask:
    def test_non_positive_interval_raises(self) -> None:
        with pytest.raises(ValueError):
            PeriodicTask("bad", 0, lambda: None)

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self) -> None:
        calls = []
        task = PeriodicTask("tick", 0.01, lambda: calls.append(1))

        assert task.start() is True
        assert task.start() is False
        await asyncio.sleep(0.06)
        await task.stop()
        count = len(calls)

        assert count >= 2
        assert task.running is False
        await asyncio.sleep(0.03)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_loop(self) -> None:
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        task = PeriodicTask("flaky", 0.01, flaky)
        task.start()
        await asyncio.sleep(0.06)
        await task.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self) -> None:
        task = PeriodicTask("idle", 1.0, lambda: None)
        await task.stop()
        assert task.running is False


class TestDelayedTask:
    @pytest.mark.asyncio
    async def test_fires_once_after_delay(self) -> None:
        calls = []
        task = DelayedTask("once", 0.01, lambda: calls.append(1))

        assert task.pending is True
        await task.wait()

        assert calls == [1]
        assert task.fired is True
        assert task.pending is False
        assert task.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_before_fire(self) -> None:
        calls = []
        task = DelayedTask("cancelled", 0.05, lambda: calls.append(1))

        assert task.cancel() is True
        await task.wait()
        await asyncio.sleep(0.08)

        assert calls == []
        assert task.fired is False
        assert task.pending is False


@pytest.mark.asyncio
async def test_call_maybe_async_awaits_coroutines() -> None:
    calls = []

    async def coro():
        calls.append("async")

    await call_maybe_async(coro)
    await call_maybe_async(lambda: calls.append("sync"))

    assert calls == ["async", "sync"]
