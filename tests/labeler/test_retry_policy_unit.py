"""Unit tests for RetryPolicy and CancellationToken."""

import asyncio
import math

import pytest
from hypothesis import given, settings, strategies as st

from src.labeler.paging.cancellation import CancellationToken, OperationCancelledError
from src.labeler.paging.retry import DEFAULT_RETRY_SCHEDULE, RetryPolicy


def run_async(coro):
    return asyncio.run(coro)


class TestRetryPolicy:
    def test_default_schedule(self):
        policy = RetryPolicy()
        assert policy.schedule == DEFAULT_RETRY_SCHEDULE
        assert policy.max_retries == 6

    def test_parse_comma_separated(self):
        policy = RetryPolicy.parse("30, 30,300")
        assert policy.schedule == (30.0, 30.0, 300.0)

    def test_parse_empty_never_retries(self):
        policy = RetryPolicy.parse("")
        assert policy.max_retries == 0
        assert policy.can_retry(0) is False

    def test_parse_rejects_non_numbers(self):
        with pytest.raises(ValueError):
            RetryPolicy.parse("30,soon")

    @pytest.mark.parametrize("delay", [-1.0, math.inf, math.nan])
    def test_rejects_invalid_delays(self, delay):
        with pytest.raises(ValueError):
            RetryPolicy.from_delays([1.0, delay])

    def test_delay_is_indexed_by_consecutive_failures(self):
        policy = RetryPolicy.from_delays([30, 30, 300])
        assert [policy.delay_for(i) for i in range(3)] == [30.0, 30.0, 300.0]

    def test_can_retry_until_schedule_exhausted(self):
        policy = RetryPolicy.from_delays([30, 30, 300])
        assert policy.can_retry(0)
        assert policy.can_retry(2)
        assert not policy.can_retry(3)

    def test_delay_past_schedule_raises(self):
        policy = RetryPolicy.from_delays([1])
        with pytest.raises(IndexError):
            policy.delay_for(1)

    @settings(max_examples=100)
    @given(st.lists(st.floats(min_value=0, max_value=1e6), max_size=10))
    def test_retries_allowed_equals_schedule_length(self, delays):
        policy = RetryPolicy.from_delays(delays)
        allowed = [n for n in range(len(delays) + 5) if policy.can_retry(n)]
        assert allowed == list(range(len(delays)))


class TestCancellationToken:
    def test_not_cancelled_initially(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_raises_with_reason(self):
        token = CancellationToken()
        token.cancel("user abort")

        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled()

        assert exc_info.value.reason == "user abort"
        assert token.cancelled is True

    def test_cancel_after_fires(self):
        async def scenario():
            token = CancellationToken()
            token.cancel_after(0.01)
            await asyncio.sleep(0.05)
            return token

        token = run_async(scenario())
        assert token.cancelled
        assert "Timed out" in token.reason
