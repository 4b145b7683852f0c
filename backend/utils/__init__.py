"""
Utils Package

Provides utility modules for:
- error_classification: Error taxonomy driving retry and sync outcomes
- retry: Exponential backoff retry
- idempotency: Duplicate write suppression
- safe_execution: Timeout + retry + idempotency wrapper
- date_normalizer: Free-form date canonicalisation
"""

from .exceptions import (
    ExpenseSyncError,
    ValidationError,
    CategoryNotFoundError,
    DateNormalizationError,
    ConfigurationError,
    OperationTimeoutError,
    SyncPreconditionError,
)
from .error_classification import (
    ErrorCategory,
    ErrorClassification,
    classify_error,
    should_retry,
    get_user_message,
)
from .retry import RetryPolicy, base_backoff, calculate_backoff, with_retry
from .idempotency import IdempotencyCache, IdempotencyRecord, generate_idempotency_key
from .safe_execution import OperationType, execute_safely, execute_with_timeout
from .date_normalizer import normalize_date_to_iso, validate_and_normalize_date

__all__ = [
    'ExpenseSyncError',
    'ValidationError',
    'CategoryNotFoundError',
    'DateNormalizationError',
    'ConfigurationError',
    'OperationTimeoutError',
    'SyncPreconditionError',
    'ErrorCategory',
    'ErrorClassification',
    'classify_error',
    'should_retry',
    'get_user_message',
    'RetryPolicy',
    'base_backoff',
    'calculate_backoff',
    'with_retry',
    'IdempotencyCache',
    'IdempotencyRecord',
    'generate_idempotency_key',
    'OperationType',
    'execute_safely',
    'execute_with_timeout',
    'normalize_date_to_iso',
    'validate_and_normalize_date',
]
