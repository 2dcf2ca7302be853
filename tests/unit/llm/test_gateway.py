"""Tests for the rate-limit retry gateway."""

from unittest.mock import patch

import pytest

from magtoepub.exceptions import LLMError, RateLimitError
from magtoepub.llm.gateway import AIGateway, RetryPolicy, is_rate_limit_error


class ScriptedCall:
    """Zero-argument coroutine factory failing with scripted errors first."""

    def __init__(self, failures: list[Exception], result: str = "done") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestIsRateLimitError:
    @pytest.mark.parametrize(
        "error",
        [
            RateLimitError(),
            Exception("429 Too Many Requests"),
            Exception("Quota exceeded for metric"),
            Exception("RESOURCE_EXHAUSTED"),
            Exception("Resource exhausted, try later"),
        ],
    )
    def test_rate_limit_errors(self, error):
        assert is_rate_limit_error(error)

    def test_status_attribute(self):
        error = Exception("too many")
        error.code = 429  # type: ignore[attr-defined]

        assert is_rate_limit_error(error)

    @pytest.mark.parametrize(
        "error",
        [Exception("Internal server error"), LLMError("invalid argument"), ValueError("bad")],
    )
    def test_other_errors(self, error):
        assert not is_rate_limit_error(error)


class TestRetryPolicy:
    def test_default_schedule(self):
        policy = RetryPolicy()

        assert policy.retries == 5
        assert policy.initial_delay == 2.0
        assert policy.max_total_wait == 62.0


class TestAIGateway:
    """Tests for AIGateway.call."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep):
        call = ScriptedCall([])

        assert await AIGateway(sleep=sleep).call(call) == "done"
        assert call.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_rate_limits(self, sleep):
        call = ScriptedCall([RateLimitError()] * 3)

        result = await AIGateway(sleep=sleep).call(call)

        assert result == "done"
        assert call.calls == 4
        assert sleep.delays == [2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, sleep):
        call = ScriptedCall([LLMError("invalid image")])

        with pytest.raises(LLMError, match="invalid image"):
            await AIGateway(sleep=sleep).call(call)

        assert call.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, sleep):
        call = ScriptedCall([RateLimitError(f"429 attempt {i}") for i in range(10)])

        with pytest.raises(RateLimitError, match="attempt 5"):
            await AIGateway(sleep=sleep).call(call)

        assert call.calls == 6
        assert sleep.delays == [2.0, 4.0, 8.0, 16.0, 32.0]

    @pytest.mark.asyncio
    async def test_exhaustion_logs_total_wait(self, sleep):
        call = ScriptedCall([RateLimitError("429") for _ in range(3)])
        gateway = AIGateway(RetryPolicy(retries=2, initial_delay=1.0), sleep=sleep)

        with patch("magtoepub.llm.gateway.log") as log, pytest.raises(RateLimitError):
            await gateway.call(call)

        log.error.assert_called_once()
        assert log.error.call_args.kwargs["waited_s"] == 3.0
        assert log.error.call_args.kwargs["retries"] == 2

    @pytest.mark.asyncio
    async def test_on_retry_callback(self, sleep):
        call = ScriptedCall([Exception("quota exceeded"), Exception("quota exceeded")])
        announced: list[float] = []

        await AIGateway(sleep=sleep).call(call, on_retry=announced.append)

        assert announced == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_calls_do_not_share_budget(self, sleep):
        gateway = AIGateway(RetryPolicy(retries=1, initial_delay=1.0), sleep=sleep)

        await gateway.call(ScriptedCall([RateLimitError()]))
        await gateway.call(ScriptedCall([RateLimitError()]))

        assert sleep.delays == [1.0, 1.0]
