"""Rate-limit-aware retry around external AI calls.

The gateway knows nothing about what it calls. It retries only
rate-limit-class failures, with exponential backoff, and lets every other
error through on the first occurrence.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import anyio

from magtoepub.config.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_INITIAL_DELAY
from magtoepub.exceptions import RateLimitError
from magtoepub.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("429", "quota", "resource_exhausted", "resource exhausted")


def is_rate_limit_error(error: BaseException) -> bool:
    """Check whether an error means the request quota was exceeded.

    True when the error is a RateLimitError, reports status/code 429, or its
    message mentions 429, quota or resource exhaustion (case-insensitive).
    """
    if isinstance(error, RateLimitError):
        return True
    for attr in ("status", "code", "status_code"):
        value = getattr(error, attr, None)
        if value == 429 or value == "429":
            return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule: ``retries`` waits of initial_delay, x2, x4, ..."""

    retries: int = DEFAULT_RETRY_ATTEMPTS
    initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY
    multiplier: float = 2.0

    @property
    def max_total_wait(self) -> float:
        return sum(self.initial_delay * self.multiplier**i for i in range(self.retries))


@dataclass
class RetryContext:
    """Per-call retry bookkeeping; never shared between calls."""

    attempts_remaining: int
    current_delay: float


class AIGateway:
    """Runs external AI calls with rate-limit backoff."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        on_retry: Callable[[float], None] | None = None,
    ) -> T:
        """Invoke ``fn`` until it succeeds or fails for good.

        Args:
            fn: Zero-argument coroutine factory, invoked once per attempt
            on_retry: Called with the upcoming delay (seconds) before each wait

        Returns:
            The result of the first successful attempt

        Raises:
            Exception: The first non-rate-limit error, or the last rate-limit
                error once the retry budget is spent
        """
        context = RetryContext(
            attempts_remaining=self.policy.retries,
            current_delay=self.policy.initial_delay,
        )

        while True:
            try:
                return await fn()
            except Exception as e:
                if not is_rate_limit_error(e):
                    raise
                if context.attempts_remaining <= 0:
                    log.error(
                        "Rate limit retries exhausted",
                        retries=self.policy.retries,
                        waited_s=self.policy.max_total_wait,
                        error=str(e),
                    )
                    raise
                log.warning(
                    "Rate limit exceeded, retrying",
                    delay_s=context.current_delay,
                    attempts_left=context.attempts_remaining,
                    error=str(e),
                )
                if on_retry is not None:
                    on_retry(context.current_delay)
                await self._sleep(context.current_delay)
                context.attempts_remaining -= 1
                context.current_delay *= self.policy.multiplier
