"""Tests for the BackgroundDispatcher."""

import asyncio

import pytest

from meetsync.sync.dispatcher import BackgroundDispatcher


class TestBackgroundDispatcher:
    @pytest.mark.asyncio
    async def test_runs_and_drains(self):
        dispatcher = BackgroundDispatcher()
        done = []

        async def work(n):
            await asyncio.sleep(0)
            done.append(n)

        for n in range(3):
            dispatcher.submit(work(n), session_id="s-1", label=f"work {n}")
        await dispatcher.drain()

        assert sorted(done) == [0, 1, 2]
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_failures_recorded_not_raised(self, caplog):
        import logging
        dispatcher = BackgroundDispatcher()

        async def boom():
            raise RuntimeError("notion down")

        with caplog.at_level(logging.ERROR, logger="meetsync.sync.dispatcher"):
            dispatcher.submit(boom(), session_id="s-9", label="commit")
            await dispatcher.drain()

        assert len(dispatcher.failures) == 1
        failure = dispatcher.failures[0]
        assert failure.session_id == "s-9"
        assert failure.label == "commit"
        assert "notion down" in failure.to_dict()["error"]
        assert "[Trace: s-9]" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_waits_for_nested_submissions(self):
        dispatcher = BackgroundDispatcher()
        done = []

        async def inner():
            await asyncio.sleep(0)
            done.append("inner")

        async def outer():
            dispatcher.submit(inner(), label="inner")
            done.append("outer")

        dispatcher.submit(outer(), label="outer")
        await dispatcher.drain()
        assert done == ["outer", "inner"]

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        dispatcher = BackgroundDispatcher(max_concurrency=2)
        running = 0
        peak = 0

        async def work():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for _ in range(6):
            dispatcher.submit(work())
        await dispatcher.drain()
        assert peak == 2

    @pytest.mark.asyncio
    async def test_shutdown_cancels(self):
        dispatcher = BackgroundDispatcher()

        async def forever():
            await asyncio.sleep(3600)

        task = dispatcher.submit(forever())
        await asyncio.sleep(0)
        await dispatcher.shutdown()
        assert task.cancelled()
