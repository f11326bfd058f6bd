"""Tests for the polling loop."""

import asyncio

import pytest

from pressroom.infrastructure.poll_loop import start_poll_loop


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_ticks_until_stopped(self):
        calls = []

        async def tick():
            calls.append(1)

        loop = start_poll_loop("test", 0.01, tick)
        await asyncio.sleep(0.1)
        await loop.stop()
        count = len(calls)
        assert count >= 2
        assert not loop.running

        await asyncio.sleep(0.05)
        assert len(calls) == count

    @pytest.mark.asyncio
    async def test_error_does_not_stop_loop(self):
        calls = []

        async def tick():
            calls.append(1)
            raise RuntimeError("boom")

        loop = start_poll_loop("failing", 0.01, tick)
        await asyncio.sleep(0.08)
        await loop.stop()
        assert len(calls) >= 2
        assert loop.ticks == len(calls)
