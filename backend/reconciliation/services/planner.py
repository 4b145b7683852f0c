"""
Reconciliation Planner

Turns a DiffResult into a bi-directional, additive-only plan:
- source-only expenses -> validated, duplicate-checked, normalized -> add_to_target
- target-only expenses -> passed through unchanged -> add_to_source
- matched pairs        -> ignored (already synchronized)

The planner is a pure function of (diff, existing target records, rules).
It performs no I/O and never inspects write results, so a plan can be
produced for a dry run with zero side effects.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from reconciliation.matching_rules.expense_rules import DiffResult, MatchedPair
from reconciliation.models import Expense, NormalizedExpense
from reconciliation.rules import PlanningRules
from utils.date_normalizer import validate_and_normalize_date

logger = logging.getLogger(__name__)

PLAN_VERSION = "2.0.0-bidirectional"
PLAN_MODE = "BI_DIRECTIONAL"
TWO_PLACES = Decimal("0.01")

STAGE_VALIDATION = "validation"
STAGE_DUPLICATE = "duplicate_detection"


# ==================== PLAN TYPES ====================

@dataclass(frozen=True)
class TargetAction:
    """Create a normalized expense in the application of record."""
    expense: NormalizedExpense
    source_expense: Expense
    reason: str = "Found in source but not in target"
    action: str = "CREATE_EXPENSE"
    confidence: str = "HIGH"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "expense": self.expense.to_dict(),
            "source_expense": self.source_expense.to_dict(),
            "reason": self.reason,
            "confidence": self.confidence
        }


@dataclass(frozen=True)
class SourceAction:
    """Include a target-only expense in the regenerated source document."""
    expense: Expense
    reason: str = "Found in target but not in source"
    action: str = "INCLUDE_IN_SOURCE"
    confidence: str = "HIGH"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "expense": self.expense.to_dict(),
            "reason": self.reason,
            "confidence": self.confidence
        }


@dataclass(frozen=True)
class IgnoredAction:
    pair: MatchedPair
    reason: str = "Already synchronized (exists in both source and target)"
    requires_action: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pair": self.pair.to_dict(),
            "reason": self.reason,
            "requires_action": self.requires_action
        }


@dataclass(frozen=True)
class RejectedAction:
    expense: Expense
    reason: str
    stage: str  # validation | duplicate_detection
    target_side: str = "target"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expense": self.expense.to_dict(),
            "reason": self.reason,
            "stage": self.stage,
            "target_side": self.target_side
        }


@dataclass(frozen=True)
class PlanSummary:
    total_source_only: int
    total_target_only: int
    total_matched: int
    approved_for_target: int
    approved_for_source: int
    rejected: int
    duplicate: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_source_only": self.total_source_only,
            "total_target_only": self.total_target_only,
            "total_matched": self.total_matched,
            "approved_for_target": self.approved_for_target,
            "approved_for_source": self.approved_for_source,
            "rejected": self.rejected,
            "duplicate": self.duplicate
        }


@dataclass(frozen=True)
class ReconciliationPlan:
    """
    Immutable, additive-only reconciliation plan.

    No list instructs a deletion. Every source-only expense is either in
    add_to_target or rejected; every target-only expense is in
    add_to_source; every matched pair is ignored.
    """
    summary: PlanSummary
    add_to_target: Tuple[TargetAction, ...]
    add_to_source: Tuple[SourceAction, ...]
    ignored: Tuple[IgnoredAction, ...]
    rejected: Tuple[RejectedAction, ...]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    mode: str = PLAN_MODE
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "mode": self.mode,
            "summary": self.summary.to_dict(),
            "add_to_target": [a.to_dict() for a in self.add_to_target],
            "add_to_source": [a.to_dict() for a in self.add_to_source],
            "ignored": [a.to_dict() for a in self.ignored],
            "rejected": [a.to_dict() for a in self.rejected],
            "metadata": self.metadata
        }


# ==================== PLANNER ====================

@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    reason: str


class ReconciliationPlanner:
    """Deterministic planner bound to one immutable rule set."""

    def __init__(self, rules: Optional[PlanningRules] = None, today: Optional[date] = None):
        self.rules = rules or PlanningRules()
        self._today = today

    # ---------- rules ----------

    def validate_expense(self, expense: Expense) -> ValidationOutcome:
        amount = expense.amount
        if amount is None or amount <= 0:
            return ValidationOutcome(False, "Invalid or missing amount")

        if not expense.description or not expense.description.strip():
            return ValidationOutcome(False, "Missing description")

        if amount < self.rules.min_amount_threshold:
            return ValidationOutcome(
                False, f"Amount below minimum threshold ({self.rules.min_amount_threshold})"
            )

        if amount > self.rules.max_auto_sync_amount:
            return ValidationOutcome(
                False,
                f"Amount exceeds auto-sync limit ({self.rules.max_auto_sync_amount}) - "
                f"requires manual approval"
            )

        if not self.rules.allow_undated_expenses and not expense.date:
            return ValidationOutcome(False, "Date required but missing")

        return ValidationOutcome(True, "Passed validation")

    def is_duplicate(self, expense: Expense, existing: Iterable[Expense]) -> bool:
        """Same amount (within tolerance) and case-insensitive equal description."""
        if self.rules.allow_duplicate_descriptions:
            return False

        description = (expense.description or "").strip().lower()
        for record in existing:
            if record.amount is None:
                continue
            if (
                abs(record.amount - expense.amount) < self.rules.duplicate_amount_tolerance
                and (record.description or "").strip().lower() == description
            ):
                return True
        return False

    def normalize_expense(self, expense: Expense) -> NormalizedExpense:
        today = self._today or date.today()

        if expense.date:
            result = validate_and_normalize_date(expense.date, today)
            if result.valid:
                expense_date, date_normalized = result.normalized, True
            else:
                # the executor skips these without calling downstream
                logger.warning(
                    f"Date normalization failed for {expense.date!r}",
                    extra={"error_message": result.error}
                )
                expense_date, date_normalized = expense.date, False
        else:
            expense_date, date_normalized = today.isoformat(), True

        metadata = dict(expense.metadata)
        metadata["original_date"] = expense.date
        if expense.external_id is not None:
            metadata["external_id"] = expense.external_id

        return NormalizedExpense(
            amount=expense.amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP),
            description=expense.description.strip(),
            date=expense_date,
            category=(expense.category or "").strip() or self.rules.default_category,
            date_normalized=date_normalized,
            metadata=metadata
        )

    # ---------- planning ----------

    def plan(
        self,
        diff: DiffResult,
        existing_target_records: Optional[Sequence[Expense]] = None
    ) -> ReconciliationPlan:
        """
        Build a plan from a diff.

        Args:
            diff: Output of compare_expenses()
            existing_target_records: Complete current target collection used
                for duplicate suppression. Defaults to every target record the
                diff was computed over.
        """
        existing = list(existing_target_records) if existing_target_records is not None else diff.all_targets

        logger.info(
            "Creating reconciliation plan",
            extra={
                "source_only": len(diff.source_only),
                "target_only": len(diff.target_only),
                "matched": len(diff.matched),
                "existing_target_records": len(existing)
            }
        )

        add_to_target = []
        rejected = []
        rejected_count = 0
        duplicate_count = 0

        for expense in diff.source_only:
            validation = self.validate_expense(expense)
            if not validation.valid:
                logger.info(f"Rejected: {validation.reason}", extra={"stage": STAGE_VALIDATION})
                rejected.append(RejectedAction(expense, validation.reason, STAGE_VALIDATION))
                rejected_count += 1
                continue

            if self.is_duplicate(expense, existing):
                logger.info("Rejected: duplicate of existing target expense", extra={"stage": STAGE_DUPLICATE})
                rejected.append(RejectedAction(
                    expense, "Duplicate of existing target expense", STAGE_DUPLICATE
                ))
                duplicate_count += 1
                continue

            add_to_target.append(TargetAction(
                expense=self.normalize_expense(expense),
                source_expense=expense
            ))

        add_to_source = [SourceAction(expense) for expense in diff.target_only]
        ignored = [IgnoredAction(pair) for pair in diff.matched]

        plan = ReconciliationPlan(
            summary=PlanSummary(
                total_source_only=len(diff.source_only),
                total_target_only=len(diff.target_only),
                total_matched=len(diff.matched),
                approved_for_target=len(add_to_target),
                approved_for_source=len(add_to_source),
                rejected=rejected_count,
                duplicate=duplicate_count
            ),
            add_to_target=tuple(add_to_target),
            add_to_source=tuple(add_to_source),
            ignored=tuple(ignored),
            rejected=tuple(rejected),
            metadata={"rules": self.rules.to_dict(), "plan_version": PLAN_VERSION}
        )

        logger.info("Reconciliation plan complete", extra=plan.summary.to_dict())
        return plan


def create_reconciliation_plan(
    diff: DiffResult,
    existing_target_records: Optional[Sequence[Expense]] = None,
    rules: Optional[PlanningRules] = None
) -> ReconciliationPlan:
    return ReconciliationPlanner(rules).plan(diff, existing_target_records)


def _format_amount(amount: Optional[Decimal]) -> str:
    return f"{amount:.2f}" if amount is not None else "?"


def summarize_plan(plan: ReconciliationPlan) -> str:
    """Human-readable preview of a plan."""
    s = plan.summary
    lines = [
        "=== BI-DIRECTIONAL RECONCILIATION PLAN ===",
        "",
        f"Generated: {plan.timestamp.isoformat()}",
        f"Mode: {plan.mode}",
        "",
        "INPUT SUMMARY:",
        f"  Source-only expenses: {s.total_source_only}",
        f"  Target-only expenses: {s.total_target_only}",
        f"  Matched expenses: {s.total_matched}",
        "",
        "PLANNED ACTIONS:",
        f"  Add to target: {s.approved_for_target}",
        f"  Add to source: {s.approved_for_source}",
        f"  Ignored (matched): {s.total_matched}",
        f"  Rejected: {s.rejected}",
        f"  Duplicates skipped: {s.duplicate}",
        "",
    ]

    if plan.add_to_target:
        lines.append("EXPENSES TO ADD TO TARGET:")
        for idx, action in enumerate(plan.add_to_target, start=1):
            e = action.expense
            lines.append(f"  {idx}. {_format_amount(e.amount)} - {e.description} ({e.category})")
        lines.append("")

    if plan.add_to_source:
        lines.append("EXPENSES TO ADD TO SOURCE:")
        for idx, action in enumerate(plan.add_to_source, start=1):
            e = action.expense
            lines.append(f"  {idx}. {_format_amount(e.amount)} - {e.description} ({e.category or 'N/A'})")
        lines.append("")

    if plan.rejected:
        lines.append("REJECTED EXPENSES:")
        for idx, rejection in enumerate(plan.rejected, start=1):
            e = rejection.expense
            lines.append(f"  {idx}. {_format_amount(e.amount)} - {e.description}")
            lines.append(f"     Reason: {rejection.reason} (Stage: {rejection.stage})")
        lines.append("")

    lines.append("NOTE: This is an ADDITIVE-ONLY sync. No data will be deleted.")
    lines.append("Matched expenses require no action (already consistent).")
    return "\n".join(lines)
