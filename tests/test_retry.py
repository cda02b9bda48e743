"""
Retrying Caller Verification

Tests that:
1. Rate-limit errors are retried with strictly increasing backoff delays
2. K < max failures succeed after exactly K+1 calls
3. K >= max failures raise after exactly max calls, with no sleep after the last
4. Non-rate-limit errors propagate on the first call
5. Rate-limit classification covers status codes, responses and messages

Run with: pytest tests/test_retry.py -v
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from giftbundle.core.retry import RateLimitError, RetryingCaller, is_rate_limit_error


def _caller(max_attempts: int = 3) -> tuple[RetryingCaller, AsyncMock]:
    sleep = AsyncMock()
    return RetryingCaller(max_attempts=max_attempts, sleep=sleep, jitter=lambda: 0.5), sleep


def _flaky(failures: int, result: str = "ok") -> AsyncMock:
    """An async callable that rate-limits `failures` times, then succeeds."""
    effects = [RateLimitError("429", status_code=429)] * failures + [result]
    return AsyncMock(side_effect=effects)


# ======================================================================
# TestRetryBehaviour
# ======================================================================

class TestRetryBehaviour:
    """Retry counts and delays."""

    async def test_success_first_try_never_sleeps(self):
        caller, sleep = _caller()
        fn = _flaky(0)
        assert await caller.call(fn, "q") == "ok"
        assert fn.call_count == 1
        sleep.assert_not_called()

    @pytest.mark.parametrize("failures", [1, 2])
    async def test_k_failures_below_max_succeed_after_k_plus_one_calls(self, failures):
        caller, sleep = _caller(max_attempts=3)
        fn = _flaky(failures)

        assert await caller.call(fn) == "ok"
        assert fn.call_count == failures + 1
        assert sleep.call_count == failures

    async def test_delays_strictly_increase(self):
        caller, sleep = _caller(max_attempts=4)
        fn = _flaky(3)

        await caller.call(fn)

        delays = [c.args[0] for c in sleep.call_args_list]
        assert delays == [1.5, 2.5, 4.5]
        assert all(a < b for a, b in zip(delays, delays[1:]))

    @pytest.mark.parametrize("failures", [3, 5])
    async def test_k_at_or_above_max_raises_after_max_calls(self, failures):
        caller, sleep = _caller(max_attempts=3)
        fn = _flaky(failures)

        with pytest.raises(RateLimitError):
            await caller.call(fn)

        assert fn.call_count == 3
        # No sleep after the final attempt
        assert sleep.call_count == 2

    async def test_single_attempt_reraises_the_original_error(self):
        caller, sleep = _caller(max_attempts=1)
        error = RateLimitError("429 Too Many Requests", status_code=429)
        fn = AsyncMock(side_effect=error)

        with pytest.raises(RateLimitError) as exc_info:
            await caller.call(fn)

        assert exc_info.value is error
        assert fn.call_count == 1
        sleep.assert_not_called()

    async def test_non_rate_limit_error_is_not_retried(self):
        caller, sleep = _caller()
        fn = AsyncMock(side_effect=ValueError("bad payload"))

        with pytest.raises(ValueError):
            await caller.call(fn)

        assert fn.call_count == 1
        sleep.assert_not_called()

    async def test_passes_arguments_through(self):
        caller, _ = _caller()
        fn = AsyncMock(return_value=[1, 2])
        await caller.call(fn, "keywords", min_price=10)
        fn.assert_awaited_once_with("keywords", min_price=10)

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryingCaller(max_attempts=0)

    def test_default_jitter_stays_under_one_second(self):
        caller = RetryingCaller()
        for attempt in range(3):
            delay = caller.backoff_delay(attempt)
            assert 2**attempt <= delay < 2**attempt + 1


# ======================================================================
# TestRateLimitClassification
# ======================================================================

class TestRateLimitClassification:
    """What counts as a rate-limit signal."""

    def test_rate_limit_error(self):
        assert is_rate_limit_error(RateLimitError("slow down"))

    def test_http_status_error_429(self):
        request = httpx.Request("GET", "https://example.com")
        response = httpx.Response(429, request=request)
        exc = httpx.HTTPStatusError("429", request=request, response=response)
        assert is_rate_limit_error(exc)

    def test_http_status_error_500_is_not_rate_limit(self):
        request = httpx.Request("GET", "https://example.com")
        response = httpx.Response(500, request=request)
        exc = httpx.HTTPStatusError("server error", request=request, response=response)
        assert not is_rate_limit_error(exc)

    def test_status_code_attribute(self):
        exc = Exception("boom")
        exc.status_code = 429
        assert is_rate_limit_error(exc)

    @pytest.mark.parametrize("message", ["Rate limit exceeded", "Too Many Requests", "Request throttled"])
    def test_message_phrases(self, message):
        assert is_rate_limit_error(Exception(message))

    def test_unrelated_error(self):
        assert not is_rate_limit_error(KeyError("ASIN"))
