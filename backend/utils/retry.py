"""
Retry with Exponential Backoff

Re-invokes an async operation on classified-retryable failures:
- Retry decision driven by utils.error_classification
- Exponential backoff with +/-25% jitter, capped
- Rate-limit retry-after hints override the computed delay
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from utils.error_classification import (
    ErrorCategory,
    ErrorClassification,
    classify_error,
    should_retry,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry/backoff parameters. Delays are in milliseconds."""
    max_retries: int = 2
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    jitter_ratio: float = 0.25

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "jitter_ratio": self.jitter_ratio
        }


DEFAULT_RETRY_POLICY = RetryPolicy()


def base_backoff(attempt: int, policy: RetryPolicy = DEFAULT_RETRY_POLICY) -> float:
    """Jitter-free backoff for an attempt (ms): min(base * 2^attempt, cap)."""
    return min(policy.base_delay_ms * (2 ** attempt), policy.max_delay_ms)


def calculate_backoff(
    attempt: int,
    classification: Optional[ErrorClassification] = None,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    rng: Optional[random.Random] = None
) -> float:
    """
    Backoff delay in milliseconds for a retry attempt.

    Args:
        attempt: Current attempt (0-indexed)
        classification: Classified error; a RATE_LIMIT retry-after overrides
        policy: Retry policy
        rng: Random source for jitter

    Returns:
        Delay in milliseconds
    """
    if (
        classification is not None
        and classification.category == ErrorCategory.RATE_LIMIT
        and classification.retry_after is not None
    ):
        return classification.retry_after * 1000

    exponential = policy.base_delay_ms * (2 ** attempt)
    jitter = exponential * policy.jitter_ratio * (rng or random).uniform(-1.0, 1.0)

    return max(0.0, min(exponential + jitter, policy.max_delay_ms))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: Optional[int] = None,
    operation_name: str = "operation",
    context: Optional[Dict[str, Any]] = None,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Sleep = asyncio.sleep,
    rng: Optional[random.Random] = None
) -> T:
    """
    Execute an async callable, retrying transient failures.

    On final failure the raised exception carries a ``classification``
    attribute with the ErrorClassification that stopped the retries.
    """
    context = context or {}
    if max_retries is None:
        max_retries = policy.max_retries

    attempt = 0
    while True:
        try:
            logger.debug(
                f"Executing {operation_name}",
                extra={"attempt": attempt + 1, "max_attempts": max_retries + 1, **context}
            )
            result = await fn()

            if attempt > 0:
                logger.info(f"{operation_name} succeeded after {attempt} retries", extra=context)

            return result

        except Exception as e:
            classification = classify_error(e)

            logger.warning(
                f"{operation_name} failed",
                extra={
                    "attempt": attempt + 1,
                    "category": classification.category.value,
                    "error_message": classification.message,
                    "retryable": classification.retryable,
                    **context
                }
            )

            if not should_retry(classification, attempt, max_retries):
                if not classification.retryable:
                    logger.error(
                        f"{operation_name} failed with non-retryable error",
                        extra={"category": classification.category.value, **context}
                    )
                else:
                    logger.error(
                        f"{operation_name} failed after {attempt + 1} attempts",
                        extra={"category": classification.category.value, **context}
                    )
                e.classification = classification
                raise

            delay_ms = calculate_backoff(attempt, classification, policy, rng)
            logger.info(
                f"Retrying {operation_name} in {int(delay_ms)}ms",
                extra={"attempt": attempt + 1, "next_attempt": attempt + 2, "delay_ms": delay_ms, **context}
            )
            await sleep(delay_ms / 1000)
            attempt += 1
