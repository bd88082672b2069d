"""
Bounded retry with exponential backoff.

Payment authorization creation gets a few automatic attempts, spaced out
with jittered exponential delays. When they run out the failure goes back
to the Step Controller, which blocks the payment form and offers the
shopper a retry button.

Usage:
    config = RetryConfig(max_retries=2, base_delay=0.5, retry_condition=is_transient)
    secret = await retry_async(api.create_payment_intent, cart, config=config)
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """How often and how patiently to retry.

    ``max_retries`` counts attempts after the first one. ``retry_condition``
    decides which failures are worth another attempt; without one every
    exception is retried.
    """

    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 8.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retry_condition: Optional[Callable[[BaseException], bool]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based), with jitter."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter > 0:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        if self.retry_condition is None:
            return True
        return self.retry_condition(exception)


# Single attempt; the caller surfaces the failure right away
NO_RETRY = RetryConfig(max_retries=0)


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, message: str, attempts: int, original_exception: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.original_exception = original_exception


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying failures the config allows.

    A failure the config does not retry is re-raised as is.

    Raises:
        RetryExhausted: when the last allowed attempt fails
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))
    attempts = 0
    while True:
        attempts += 1
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if attempts > config.max_retries:
                raise RetryExhausted(
                    f"All {attempts} attempts failed for {name}",
                    attempts=attempts,
                    original_exception=e,
                ) from e
            if not config.should_retry(e):
                logger.debug(f"{type(e).__name__} from {name} is not retryable")
                raise

            delay = config.calculate_delay(attempts - 1)
            logger.warning(
                f"Retry {attempts}/{config.max_retries} for {name} after "
                f"{type(e).__name__}: {e}. Waiting {delay:.2f}s"
            )
            await sleep(delay)
