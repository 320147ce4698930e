# tests/unit/test_reconnect.py
"""Unit tests for the reconnect policy."""

import asyncio

import pytest

from client.errors import ConnectFailed
from client.reconnect import ReconnectPolicy


class TestDelays:
    """Tests for the backoff schedule."""

    def test_exponential_growth(self):
        policy = ReconnectPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]

    def test_capped_at_max_delay(self):
        policy = ReconnectPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0)
        assert policy.delay_for(6) == 30.0
        assert policy.delay_for(20) == 30.0

    def test_no_delay_before_first_attempt(self):
        assert ReconnectPolicy().delay_for(0) == 0.0


class TestRun:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        attempts = []

        async def connect():
            attempts.append(len(attempts) + 1)
            if len(attempts) < 3:
                raise ConnectFailed("refused")

        policy = ReconnectPolicy(max_attempts=5, base_delay=0.001)
        assert await policy.run(connect) is True
        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, caplog):
        calls = []

        async def connect():
            calls.append(1)
            raise ConnectionRefusedError("refused")

        policy = ReconnectPolicy(max_attempts=3, base_delay=0.001)
        assert await policy.run(connect) is False
        assert len(calls) == 3
        assert "Max reconnect attempts" in caplog.text

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        async def connect():
            raise ValueError("bad uri")

        with pytest.raises(ValueError):
            await ReconnectPolicy(base_delay=0.001).run(connect)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        async def connect():
            raise ConnectFailed("down")

        task = asyncio.create_task(ReconnectPolicy(base_delay=10).run(connect))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
