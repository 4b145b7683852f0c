"""
Expense Sync Exceptions

Exception hierarchy raised by the reconciliation pipeline and its
collaborators. Every class here is recognised by the error classifier
(utils.error_classification) so retry and reporting logic can treat
them uniformly.
"""

from typing import Any, Dict, List, Optional


class ExpenseSyncError(Exception):
    """Base exception for the expense reconciler."""
    pass


class ValidationError(ExpenseSyncError):
    """Input rejected because of its shape or content. Never retried."""

    def __init__(self, message: str, errors: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.errors = errors or []
        self.details = details or {}


class CategoryNotFoundError(ValidationError):
    """Downstream backend does not know the requested category."""

    def __init__(self, category: str, available: Optional[List[str]] = None):
        available = available or []
        message = f'Category "{category}" not found in backend'
        if available:
            message += f". Please use one of: {', '.join(available)}"
        super().__init__(message, details={"category": category, "available": available})
        self.category = category


class DateNormalizationError(ValidationError):
    """Date string could not be canonicalised to YYYY-MM-DD."""
    pass


class ConfigurationError(ExpenseSyncError):
    """Misconfiguration (missing credentials, bad URL). Never retried."""
    pass


class OperationTimeoutError(ExpenseSyncError, TimeoutError):
    """Raised when a wrapped operation exceeds its time budget."""

    code = "OPERATION_TIMEOUT"

    def __init__(self, operation_name: str, timeout_seconds: float):
        super().__init__(
            f"Operation timeout: {operation_name} exceeded {int(timeout_seconds * 1000)}ms"
        )
        self.operation_name = operation_name
        self.timeout_seconds = timeout_seconds


class SyncPreconditionError(ExpenseSyncError):
    """A sync run cannot start (missing identity, empty plan)."""
    pass
