"""
Bounded retry with exponential backoff for outbound calls
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from consult_assist.core.errors import (
    ConfigurationError,
    UpstreamNetworkError,
    UpstreamStatusError,
)
from consult_assist.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_MESSAGE_MARKERS = ("rate limit", "timeout", "overloaded", "unavailable", "server error")

OnRetry = Callable[[int, BaseException], None]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2

    def delay_ms(self, attempt: int) -> float:
        """Delay before the retry that follows the 0-indexed ``attempt``."""
        return min(self.initial_delay_ms * self.backoff_multiplier ** attempt, self.max_delay_ms)


DEFAULT_RETRY_POLICY = RetryPolicy()

# Fewer retries keep the user from waiting too long on a finished recording
TRANSCRIPTION_RETRY_POLICY = RetryPolicy(max_retries=2, initial_delay_ms=1000, max_delay_ms=5000)


def is_retryable(exc: BaseException) -> bool:
    """Return True if the failure is transient and worth another attempt."""
    if isinstance(exc, ConfigurationError):
        return False
    if isinstance(exc, (UpstreamNetworkError, httpx.TransportError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, UpstreamStatusError) and exc.status_code in RETRYABLE_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MESSAGE_MARKERS)


def _make_before_sleep(policy: RetryPolicy, description: str, on_retry: Optional[OnRetry]):
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        attempt = retry_state.attempt_number
        logger.warning(
            f"Retrying {description}, attempt {attempt + 1} of {policy.max_retries + 1}: {error}"
        )
        if on_retry is None:
            return
        try:
            on_retry(attempt, error)
        except Exception as e:
            logger.warning(f"on_retry observer for {description} failed: {e}")

    return before_sleep


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    on_retry: Optional[OnRetry] = None,
    sleep: Optional[Sleep] = None,
    description: str = "upstream call",
) -> T:
    """
    Run ``operation`` until it succeeds, fails fatally, or exhausts
    ``policy.max_retries``. The last error is re-raised unchanged.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(
            multiplier=policy.initial_delay_ms / 1000,
            max=policy.max_delay_ms / 1000,
            exp_base=policy.backoff_multiplier,
        ),
        retry=retry_if_exception(is_retryable),
        before_sleep=_make_before_sleep(policy, description, on_retry),
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )
    return await retrying(operation)
