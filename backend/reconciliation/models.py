"""
Expense Reconciliation - Domain Models

- Expense: a raw expense as read from either side (immutable)
- NormalizedExpense: an expense ready to be written to the application
  of record, produced by the planner
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ==================== ENUMS ====================

class ExpenseSide(str, Enum):
    """Which collection an expense was read from."""
    SOURCE = "SOURCE"  # document-derived
    TARGET = "TARGET"  # application of record


def parse_amount(value: Any) -> Optional[Decimal]:
    """Lenient amount parsing: anything that is not a finite number becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    return amount if amount.is_finite() else None


# ==================== MODELS ====================

class Expense(BaseModel):
    """
    A raw expense.

    Values are kept as read; the amount is None when missing or not a
    number so that validation can reject it later instead of failing
    at read time.
    """
    model_config = ConfigDict(frozen=True)

    amount: Optional[Decimal] = None
    description: Optional[str] = None
    date: Optional[str] = None
    category: Optional[str] = None
    external_id: Optional[str] = None
    provenance: ExpenseSide = ExpenseSide.SOURCE
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return parse_amount(value)

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return value

    @field_validator("external_id", mode="before")
    @classmethod
    def _coerce_external_id(cls, value):
        return None if value is None else str(value)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], side: ExpenseSide = ExpenseSide.SOURCE) -> "Expense":
        """
        Build an Expense from a loosely shaped mapping.

        Accepts the field aliases used by the backend and extractors
        (expense_date, category_name, id).
        """
        category = record.get("category")
        if isinstance(category, Mapping):
            category = category.get("name")
        if category is None:
            category = record.get("category_name")

        description = record.get("description")
        if description is None:
            description = record.get("category_name")

        known = {
            "amount", "description", "date", "expense_date", "category",
            "category_name", "id", "external_id", "metadata",
        }
        metadata = dict(record.get("metadata") or {})
        metadata.update({k: v for k, v in record.items() if k not in known})

        return cls(
            amount=record.get("amount"),
            description=description,
            date=record.get("date") or record.get("expense_date"),
            category=category,
            external_id=record.get("external_id") or record.get("id"),
            provenance=side,
            metadata=metadata
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount) if self.amount is not None else None,
            "description": self.description,
            "date": self.date,
            "category": self.category,
            "external_id": self.external_id,
            "provenance": self.provenance.value,
            "metadata": self.metadata
        }


class NormalizedExpense(BaseModel):
    """An expense approved for the application of record."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    description: str
    date: str
    category: str
    source: str = "DOCUMENT_SYNC"
    date_normalized: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Arguments sent to the create operation."""
        return {
            "amount": str(self.amount),
            "description": self.description,
            "category": self.category,
            "expense_date": self.date
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "description": self.description,
            "date": self.date,
            "category": self.category,
            "source": self.source,
            "date_normalized": self.date_normalized,
            "metadata": self.metadata
        }
