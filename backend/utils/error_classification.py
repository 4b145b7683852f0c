"""
Error Classification

Maps any raised fault into a fixed taxonomy so that retry, reporting and
sync outcome decisions are made the same way everywhere:

- VALIDATION    - client-shaped 4xx / bad input   -> not retryable, user-facing
- AUTHORIZATION - 401 / 403                        -> not retryable, user-facing
- RATE_LIMIT    - 429                              -> retryable, user-facing, retry-after
- UPSTREAM      - 5xx from the downstream backend  -> retryable
- TRANSIENT     - network failures and timeouts    -> retryable
- FATAL         - misconfiguration                 -> not retryable
- UNKNOWN       - anything unrecognised            -> not retryable

Unknown failures are never retried.
"""

import asyncio
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx
import pydantic

from utils.exceptions import (
    ConfigurationError,
    ValidationError,
)


class ErrorCategory(str, Enum):
    """Error taxonomy used by retry and sync logic."""
    VALIDATION = "VALIDATION"
    AUTHORIZATION = "AUTHORIZATION"
    RATE_LIMIT = "RATE_LIMIT"
    UPSTREAM = "UPSTREAM"
    TRANSIENT = "TRANSIENT"
    FATAL = "FATAL"
    UNKNOWN = "UNKNOWN"


# (retryable, user_facing) per category
CATEGORY_POLICY: Dict[ErrorCategory, Tuple[bool, bool]] = {
    ErrorCategory.VALIDATION: (False, True),
    ErrorCategory.AUTHORIZATION: (False, True),
    ErrorCategory.RATE_LIMIT: (True, True),
    ErrorCategory.UPSTREAM: (True, False),
    ErrorCategory.TRANSIENT: (True, False),
    ErrorCategory.FATAL: (False, False),
    ErrorCategory.UNKNOWN: (False, False),
}

DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass(frozen=True)
class ErrorClassification:
    """A classified error."""
    category: ErrorCategory
    message: str
    retryable: bool
    user_facing: bool
    http_status: Optional[int] = None
    retry_after: Optional[float] = None  # seconds
    code: Optional[str] = None
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return data


def _classification(category: ErrorCategory, message: str, **kwargs) -> ErrorClassification:
    retryable, user_facing = CATEGORY_POLICY[category]
    return ErrorClassification(
        category=category,
        message=message,
        retryable=retryable,
        user_facing=user_facing,
        **kwargs
    )


def _parse_retry_after(value: Any) -> float:
    """Parse a Retry-After header value given in seconds."""
    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS
    return seconds if seconds >= 0 else DEFAULT_RETRY_AFTER_SECONDS


def _response_body(response: Any) -> Dict[str, Any]:
    try:
        body = response.json()
    except Exception:
        return {}
    return body if isinstance(body, dict) else {}


def _status_of(error: BaseException) -> Tuple[Optional[int], Any]:
    """Extract (status_code, response) from an HTTP-shaped error."""
    response = getattr(error, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status, response

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status, response

    return None, None


def classify_http_status(status: int, response: Any = None, message: Optional[str] = None) -> Optional[ErrorClassification]:
    """Classify an HTTP status code returned by the downstream backend."""
    body = _response_body(response) if response is not None else {}

    if 400 <= status < 500:
        if status in (401, 403):
            return _classification(
                ErrorCategory.AUTHORIZATION,
                body.get("message") or message or "Authorization failed",
                http_status=status
            )

        if status == 429:
            headers = getattr(response, "headers", None) or {}
            return _classification(
                ErrorCategory.RATE_LIMIT,
                "Rate limit exceeded, please try again later",
                http_status=status,
                retry_after=_parse_retry_after(headers.get("retry-after"))
            )

        # 400, 404, 409, 422 etc
        return _classification(
            ErrorCategory.VALIDATION,
            body.get("message") or message or "Invalid request",
            http_status=status,
            details=body.get("details") or body.get("error")
        )

    if status >= 500:
        return _classification(
            ErrorCategory.UPSTREAM,
            "Backend service error",
            http_status=status
        )

    return None


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify an exception into the error taxonomy.

    Args:
        error: Any exception raised by a downstream operation

    Returns:
        ErrorClassification with category, retryability and user-facing flag
    """
    existing = getattr(error, "classification", None)
    if isinstance(existing, ErrorClassification):
        return existing

    # HTTP responses (httpx.HTTPStatusError or anything exposing a status)
    status, response = _status_of(error)
    if status is not None:
        classified = classify_http_status(status, response, str(error) or None)
        if classified:
            return classified

    # Timeouts (httpx, asyncio, our own wrapper)
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return _classification(
            ErrorCategory.TRANSIENT,
            "Request timeout",
            code=getattr(error, "code", None) or type(error).__name__
        )

    # Network errors, no response received
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return _classification(
            ErrorCategory.TRANSIENT,
            "Network error - service unreachable",
            code=type(error).__name__
        )

    if isinstance(error, ValidationError):
        return _classification(
            ErrorCategory.VALIDATION,
            str(error),
            details=error.details or None
        )

    if isinstance(error, pydantic.ValidationError):
        return _classification(
            ErrorCategory.VALIDATION,
            str(error),
            details=error.errors()
        )

    if isinstance(error, ConfigurationError):
        return _classification(ErrorCategory.FATAL, str(error) or "Configuration error")

    return _classification(ErrorCategory.UNKNOWN, str(error) or "Unknown error")


def should_retry(classification: ErrorClassification, attempt: int, max_retries: int = 3) -> bool:
    """
    Decide whether to retry after a failure.

    Args:
        classification: Result of classify_error()
        attempt: Current attempt (0-indexed)
        max_retries: Maximum number of retries allowed
    """
    if attempt >= max_retries:
        return False
    return classification.retryable is True


def get_user_message(classification: ErrorClassification) -> str:
    """User-friendly message that hides internal details."""
    if classification.user_facing and classification.message:
        return classification.message

    if classification.category == ErrorCategory.TRANSIENT:
        return "A temporary issue occurred. Please try again in a moment."
    if classification.category == ErrorCategory.UPSTREAM:
        return "Our backend service is experiencing issues. Please try again later."
    if classification.category == ErrorCategory.RATE_LIMIT:
        return "You're doing that too quickly. Please wait a moment and try again."
    if classification.category == ErrorCategory.FATAL:
        return "A system error occurred. Our team has been notified."
    return "An unexpected error occurred. Please try again or contact support."
