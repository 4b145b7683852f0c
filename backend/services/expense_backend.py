"""
Expense Backend Client

HTTP client for the expense backend (the application of record).

Endpoints:
- GET  /expenses/categories   -> [{id, name}, ...]
- GET  /expenses              -> [{id, amount, description, date, category_name}, ...]
                                 or {"expenses": [...]}
- POST /expenses              <- {amount, category_id, description, date}

Errors are raised, never swallowed: HTTP failures surface as
httpx.HTTPStatusError / httpx.TransportError so the error classifier can
decide whether they are retryable. An unknown category raises
CategoryNotFoundError (validation, never retried).
"""

import itertools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from reconciliation.models import Expense, ExpenseSide, NormalizedExpense
from utils.error_classification import classify_http_status
from utils.exceptions import CategoryNotFoundError, ConfigurationError

logger = logging.getLogger(__name__)

CATEGORY_CACHE_SECONDS = 5 * 60
DEFAULT_CATEGORIES = ["Food", "Transport", "Entertainment", "Shopping", "Bills", "Health", "Other"]


class ExpenseBackendClient:
    """
    Async client for the expense backend.

    Categories are cached for five minutes; a stale cache is served when a
    refresh fails.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not base_url:
            raise ConfigurationError("Expense backend URL is not configured")

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport
        )
        self._categories: Optional[List[Dict[str, Any]]] = None
        self._categories_fetched_at: Optional[float] = None

    @classmethod
    def from_settings(cls, settings) -> "ExpenseBackendClient":
        return cls(
            base_url=settings.EXPENSE_BACKEND_URL,
            token=settings.EXPENSE_BACKEND_TOKEN,
            timeout=settings.EXPENSE_BACKEND_TIMEOUT
        )

    async def __aenter__(self) -> "ExpenseBackendClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, identity: Optional[str] = None, **kwargs) -> Any:
        headers = {"X-User-Id": str(identity)} if identity else None
        response = await self._client.request(method, path, headers=headers, **kwargs)

        if response.is_error:
            classification = classify_http_status(response.status_code, response)
            logger.warning(
                f"Expense backend {method} {path} failed",
                extra={
                    "status_code": response.status_code,
                    "category": classification.category.value if classification else None
                }
            )
            response.raise_for_status()

        return response.json()

    # ---------- categories ----------

    async def list_categories(self, identity: Optional[str] = None, force_refresh: bool = False) -> List[Dict[str, Any]]:
        now = time.monotonic()
        if (
            not force_refresh
            and self._categories is not None
            and now - self._categories_fetched_at < CATEGORY_CACHE_SECONDS
        ):
            return self._categories

        try:
            categories = await self._request("GET", "/expenses/categories", identity)
        except httpx.HTTPError as e:
            if self._categories is not None:
                logger.warning(f"Category refresh failed, using stale cache: {e}")
                return self._categories
            raise

        self._categories = list(categories)
        self._categories_fetched_at = now
        logger.info(f"Cached {len(self._categories)} categories")
        return self._categories

    async def find_category(self, name: str, identity: Optional[str] = None) -> Optional[Dict[str, Any]]:
        wanted = name.strip().lower()
        for category in await self.list_categories(identity):
            if str(category.get("name", "")).lower() == wanted:
                return category
        return None

    # ---------- expenses ----------

    async def list_expenses(self, identity: str) -> List[Expense]:
        """Complete current target collection for the caller."""
        data = await self._request("GET", "/expenses", identity)
        records = data.get("expenses", []) if isinstance(data, dict) else data
        return [Expense.from_record(r, ExpenseSide.TARGET) for r in records]

    async def create_expense(self, expense: NormalizedExpense, identity: str) -> Dict[str, Any]:
        """
        Create one expense.

        Raises:
            CategoryNotFoundError: backend has no category with that name
            httpx.HTTPStatusError: backend rejected the request
        """
        category = await self.find_category(expense.category, identity)
        if category is None:
            available = [c.get("name") for c in self._categories or []] or DEFAULT_CATEGORIES
            raise CategoryNotFoundError(expense.category, available)

        payload = {
            "amount": float(expense.amount),
            "category_id": category["id"],
            "description": expense.description,
            "date": expense.date
        }
        created = await self._request("POST", "/expenses", identity, json=payload)
        logger.info(
            "Created expense",
            extra={"expense_id": created.get("id"), "category": category.get("name")}
        )
        return created


class MockExpenseBackend:
    """
    In-memory expense backend for tests and dry environments.

    ``failures`` queues exceptions raised by the next create_expense calls,
    one per call, before normal behaviour resumes.
    """

    def __init__(
        self,
        categories: Optional[List[str]] = None,
        expenses: Optional[List[Dict[str, Any]]] = None,
        failures: Optional[List[Exception]] = None
    ):
        self._ids = itertools.count(1)
        self.categories = [
            {"id": i, "name": name}
            for i, name in enumerate(categories or DEFAULT_CATEGORIES, start=1)
        ]
        self.expenses: List[Dict[str, Any]] = []
        for record in expenses or []:
            self.expenses.append({"id": next(self._ids), **record})
        self.failures = list(failures or [])
        self.create_calls = 0

    async def list_categories(self, identity: Optional[str] = None, force_refresh: bool = False) -> List[Dict[str, Any]]:
        return list(self.categories)

    async def list_expenses(self, identity: str) -> List[Expense]:
        return [Expense.from_record(r, ExpenseSide.TARGET) for r in self.expenses]

    async def create_expense(self, expense: NormalizedExpense, identity: str) -> Dict[str, Any]:
        self.create_calls += 1
        if self.failures:
            raise self.failures.pop(0)

        category = next(
            (c for c in self.categories if c["name"].lower() == expense.category.lower()),
            None
        )
        if category is None:
            raise CategoryNotFoundError(expense.category, [c["name"] for c in self.categories])

        record = {
            "id": next(self._ids),
            "amount": str(expense.amount),
            "description": expense.description,
            "date": expense.date,
            "category_name": category["name"],
            "created_at": datetime.now(timezone.utc).isoformat()
        }
        self.expenses.append(record)
        return record

    async def aclose(self):
        pass
