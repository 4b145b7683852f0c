"""
Safe Operation Execution

Wraps one externally supplied async operation with:
1. a per-attempt timeout (asyncio.wait_for)
2. classified retry with exponential backoff (utils.retry)
3. idempotency (utils.idempotency) around the timeout+retry call, for
   write and delete operations only

A timeout cancels the awaiting coroutine, but the downstream service may
still complete the request afterwards. The idempotency key is derived
from the operation arguments so a same-argument retry is suppressed once
a result has been recorded.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

from utils.error_classification import classify_error
from utils.exceptions import OperationTimeoutError
from utils.idempotency import IdempotencyCache
from utils.retry import DEFAULT_RETRY_POLICY, RetryPolicy, Sleep, with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30.0


class OperationType(str, Enum):
    """Operation types for idempotency decisions."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"


OPERATION_TYPES: Dict[str, OperationType] = {
    "create_expense": OperationType.WRITE,
    "modify_expense": OperationType.WRITE,
    "delete_expense": OperationType.DELETE,
    "clear_expenses": OperationType.DELETE,
    "list_expenses": OperationType.READ,
    "list_categories": OperationType.READ,
}


def get_operation_type(operation_name: str) -> OperationType:
    """Unknown operations are treated as writes."""
    return OPERATION_TYPES.get(operation_name, OperationType.WRITE)


async def execute_with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    operation_name: str
) -> T:
    """Await ``operation()`` for at most ``timeout_seconds``."""
    try:
        return await asyncio.wait_for(operation(), timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation_name, timeout_seconds) from e


async def execute_safely(
    operation: Callable[[], Awaitable[T]],
    *,
    operation_name: str,
    args: Mapping[str, Any],
    identity: Optional[str] = None,
    cache: Optional[IdempotencyCache] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    idempotency_ttl_seconds: Optional[float] = None,
    context: Optional[Dict[str, Any]] = None,
    sleep: Sleep = asyncio.sleep
) -> T:
    """
    Execute an operation with timeout, retry and idempotency.

    Args:
        operation: Zero-argument coroutine factory performing the call
        operation_name: Name used for logging and the idempotency key
        args: Arguments of the call (hashed into the idempotency key)
        identity: Caller identity; idempotency is only applied when set
        cache: Idempotency cache; idempotency is only applied when set
        timeout_seconds: Per-attempt timeout
        policy: Retry policy

    Returns:
        Result of the operation (fresh or cached)

    Raises:
        The last exception, annotated with ``classification``,
        ``operation_name`` and ``duration_ms``.
    """
    context = {"operation": operation_name, **(context or {})}
    operation_type = get_operation_type(operation_name)
    use_idempotency = (
        operation_type != OperationType.READ
        and bool(identity)
        and cache is not None
    )

    logger.info(
        f"Executing operation: {operation_name}",
        extra={
            "timeout_seconds": timeout_seconds,
            "max_retries": policy.max_retries,
            "operation_type": operation_type.value,
            "use_idempotency": use_idempotency,
            **context
        }
    )

    start = time.monotonic()

    async def attempt() -> T:
        return await execute_with_timeout(operation, timeout_seconds, operation_name)

    async def run_with_retry() -> T:
        return await with_retry(
            attempt,
            operation_name=f"operation:{operation_name}",
            context=context,
            policy=policy,
            sleep=sleep
        )

    try:
        if use_idempotency:
            result = await cache.with_idempotency(
                identity,
                operation_name,
                args,
                run_with_retry,
                ttl_seconds=idempotency_ttl_seconds
            )
        else:
            result = await run_with_retry()

    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        classification = getattr(e, "classification", None) or classify_error(e)

        logger.error(
            f"Operation failed: {operation_name}",
            extra={
                "duration_ms": duration_ms,
                "category": classification.category.value,
                "error_message": classification.message,
                "retryable": classification.retryable,
                **context
            }
        )

        e.classification = classification
        e.operation_name = operation_name
        e.duration_ms = duration_ms
        raise

    logger.info(
        f"Operation successful: {operation_name}",
        extra={"duration_ms": int((time.monotonic() - start) * 1000), **context}
    )
    return result
