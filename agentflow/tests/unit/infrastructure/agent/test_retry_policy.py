"""Tests for FixedDelayRetryPolicy."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from agentflow.infrastructure.agent.retry.policy import FixedDelayRetryPolicy


@pytest.mark.unit
class TestFixedDelayRetryPolicy:
    def test_defaults(self) -> None:
        policy = FixedDelayRetryPolicy()

        assert policy.max_attempts == 3
        assert policy.delay_seconds == 5.0
        assert list(policy.attempts()) == [0, 1, 2]

    def test_is_last(self) -> None:
        policy = FixedDelayRetryPolicy(max_attempts=2)

        assert policy.is_last(0) is False
        assert policy.is_last(1) is True

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"max_attempts": 0}, "max_attempts"),
            ({"delay_seconds": -1}, "delay_seconds"),
        ],
    )
    def test_invalid_arguments(self, kwargs, message: str) -> None:
        with pytest.raises(ValueError, match=message):
            FixedDelayRetryPolicy(**kwargs)

    @pytest.mark.asyncio
    async def test_wait_sleeps_for_delay(self) -> None:
        policy = FixedDelayRetryPolicy(delay_seconds=1.5)

        with patch("asyncio.sleep", new=AsyncMock()) as sleep:
            await policy.wait()

        sleep.assert_awaited_once_with(1.5)

    @pytest.mark.asyncio
    async def test_wait_propagates_cancellation(self) -> None:
        policy = FixedDelayRetryPolicy(delay_seconds=60)

        task = asyncio.create_task(policy.wait())
        await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
