"""Tests for bounded constant-delay retry."""

from unittest.mock import AsyncMock, patch

import pytest

from launcher.retry import RetryConfig, retry_until


def flaky(failures: int):
    """Operation that fails ``failures`` times and then returns True."""
    calls = {"n": 0}

    async def operation() -> bool:
        calls["n"] += 1
        return calls["n"] > failures

    return operation, calls


class TestRetryConfig:
    """Tests for RetryConfig validation."""

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0, delay=1.0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=3, delay=-1.0)

    def test_ceiling(self):
        """Engine budget of 45 attempts at 2s waits about 90s."""
        assert RetryConfig(45, 2.0).ceiling == pytest.approx(88.0)
        assert RetryConfig(1, 5.0).ceiling == 0


class TestRetryUntil:
    """Tests for retry_until."""

    @pytest.mark.asyncio
    async def test_success_first_try_calls_once(self):
        operation, calls = flaky(0)

        outcome = await retry_until(operation, RetryConfig(5, 0.0))

        assert outcome.succeeded is True
        assert outcome.attempts == 1
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_succeeds_after_n_minus_one_failures(self):
        """n-1 failures followed by a success invokes the operation n times."""
        operation, calls = flaky(4)

        outcome = await retry_until(operation, RetryConfig(5, 0.0))

        assert outcome.succeeded is True
        assert outcome.attempts == 5
        assert calls["n"] == 5

    @pytest.mark.asyncio
    async def test_never_exceeds_max_attempts(self):
        operation, calls = flaky(100)

        outcome = await retry_until(operation, RetryConfig(3, 0.0))

        assert outcome.succeeded is False
        assert outcome.value is False
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_sleeps_constant_delay_between_attempts(self):
        """Delay is constant and only happens between attempts."""
        operation, _ = flaky(2)

        with patch("launcher.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            await retry_until(operation, RetryConfig(5, 2.0))

        assert mock_sleep.await_count == 2
        assert all(call.args == (2.0,) for call in mock_sleep.await_args_list)

    @pytest.mark.asyncio
    async def test_custom_success_predicate(self):
        """The predicate decides success, not truthiness."""
        values = iter([1, 2, 3])

        async def operation() -> int:
            return next(values)

        outcome = await retry_until(
            operation, RetryConfig(5, 0.0), succeeded=lambda v: v >= 3
        )

        assert outcome.value == 3
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        operation, _ = flaky(2)
        seen: list[tuple[int, bool]] = []

        await retry_until(
            operation,
            RetryConfig(5, 0.0),
            on_retry=lambda attempt, value: seen.append((attempt, value)),
        )

        assert seen == [(1, False), (2, False)]
