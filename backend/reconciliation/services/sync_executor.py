"""
Sync Executor

Applies the add_to_target side of a reconciliation plan to the
application of record.

Step 1 - deduplicate actions on date|amount|category|description
Step 2 - execute sequentially through execute_safely() (timeout, retry,
         idempotency), with a fixed delay between actions
Step 3 - finalize the summary once every action was attempted once

Outcomes are tri-state:
- SUCCEEDED
- FAILED_RETRYABLE: downstream/transient failure; re-running the whole
  reconciliation is safe because of dedup and the idempotency cache
- SKIPPED_NON_RETRYABLE: bad input (unparseable date, unknown category);
  re-running will not help until the data changes
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.models import NormalizedExpense
from reconciliation.rules import SyncOptions
from reconciliation.services.planner import TargetAction
from sentry_integration import capture_exception
from utils.date_normalizer import validate_and_normalize_date
from utils.error_classification import ErrorCategory, classify_error
from utils.exceptions import SyncPreconditionError
from utils.idempotency import IdempotencyCache
from utils.retry import Sleep
from utils.safe_execution import execute_safely

logger = logging.getLogger(__name__)

CREATE_OPERATION = "create_expense"

CreateRecord = Callable[[NormalizedExpense, str], Awaitable[Any]]


class SyncOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED_RETRYABLE = "FAILED_RETRYABLE"
    SKIPPED_NON_RETRYABLE = "SKIPPED_NON_RETRYABLE"


class SkipReason:
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NON_RETRYABLE_ERROR = "NON_RETRYABLE_ERROR"
    BACKEND_ERROR = "BACKEND_ERROR"


@dataclass
class ActionResult:
    """Outcome of one executed action."""
    action: TargetAction
    outcome: SyncOutcome
    record: Any = None
    error: Optional[str] = None
    reason: Optional[str] = None
    error_category: Optional[str] = None
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.outcome == SyncOutcome.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        record = self.record
        if hasattr(record, "model_dump"):
            record = record.model_dump(mode="json")
        return {
            "expense": self.action.expense.to_dict(),
            "outcome": self.outcome.value,
            "record": record,
            "error": self.error,
            "reason": self.reason,
            "error_category": self.error_category,
            "executed_at": self.executed_at.isoformat()
        }


@dataclass
class SyncSummary:
    """
    Run summary, built one action at a time.

    attempted == succeeded + failed + skipped and
    attempted <= total_after_dedup hold at every step.
    """
    run_id: str
    total_planned: int
    total_after_dedup: int = 0
    duplicates_removed: int = 0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: List[ActionResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def record(self, result: ActionResult):
        if self.completed_at is not None:
            raise RuntimeError(f"Sync summary {self.run_id} is already finalized")
        self.attempted += 1
        if result.outcome == SyncOutcome.SUCCEEDED:
            self.succeeded += 1
        elif result.outcome == SyncOutcome.SKIPPED_NON_RETRYABLE:
            self.skipped += 1
        else:
            self.failed += 1
        self.results.append(result)

    def finalize(self):
        self.completed_at = datetime.now(timezone.utc)

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    @property
    def errors(self) -> List[ActionResult]:
        return [r for r in self.results if r.outcome == SyncOutcome.FAILED_RETRYABLE]

    @property
    def skipped_details(self) -> List[ActionResult]:
        return [r for r in self.results if r.outcome == SyncOutcome.SKIPPED_NON_RETRYABLE]

    def counts(self) -> Dict[str, int]:
        return {
            "total_planned": self.total_planned,
            "total_after_dedup": self.total_after_dedup,
            "duplicates_removed": self.duplicates_removed,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            **self.counts(),
            "results": [r.to_dict() for r in self.results]
        }


def validate_sync_prerequisites(actions: Optional[Sequence[TargetAction]], identity: Optional[str]):
    """Raise SyncPreconditionError when a run must not start."""
    if actions is None:
        raise SyncPreconditionError("Invalid reconciliation plan (missing add_to_target)")
    if len(actions) == 0:
        raise SyncPreconditionError("No target-side actions to execute (plan is empty)")
    if not identity:
        raise SyncPreconditionError("Caller identity required")


def dedup_key(expense: NormalizedExpense) -> str:
    return f"{expense.date}|{expense.amount}|{expense.category}|{expense.description}".lower()


class SyncExecutor:
    """
    Sequential, partial-failure-aware executor for target-side actions.

    Args:
        create_record: async (normalized_expense, identity) -> created record
        cache: Idempotency cache shared across runs of the same process
        options: Timeout, retry, TTL and pacing
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        create_record: CreateRecord,
        cache: Optional[IdempotencyCache] = None,
        options: Optional[SyncOptions] = None,
        sleep: Sleep = asyncio.sleep
    ):
        self.create_record = create_record
        self.options = options or SyncOptions()
        self.cache = cache if cache is not None else IdempotencyCache(self.options.idempotency_ttl_seconds)
        self._sleep = sleep

    def deduplicate(self, actions: Sequence[TargetAction]) -> List[TargetAction]:
        seen = set()
        unique = []
        for action in actions:
            key = dedup_key(action.expense)
            if key in seen:
                logger.info(f"Duplicate action skipped: {action.expense.description}")
                continue
            seen.add(key)
            unique.append(action)
        return unique

    async def execute(
        self,
        actions: Sequence[TargetAction],
        identity: str,
        run_id: Optional[str] = None
    ) -> SyncSummary:
        """
        Apply actions one at a time.

        Raises:
            SyncPreconditionError: identity missing or nothing to execute.
                No action is attempted in that case.
        """
        validate_sync_prerequisites(actions, identity)

        run_id = run_id or f"sync_{uuid.uuid4().hex[:12]}"
        summary = SyncSummary(run_id=run_id, total_planned=len(actions))

        unique = self.deduplicate(actions)
        summary.total_after_dedup = len(unique)
        summary.duplicates_removed = len(actions) - len(unique)

        log_reconciliation_event(
            ReconciliationAuditEvent.SYNC_STARTED,
            identity,
            {
                "total_planned": summary.total_planned,
                "total_after_dedup": summary.total_after_dedup,
                "duplicates_removed": summary.duplicates_removed
            },
            run_id=run_id
        )

        for index, action in enumerate(unique):
            if index > 0 and self.options.inter_action_delay_seconds > 0:
                await self._sleep(self.options.inter_action_delay_seconds)

            result = await self._execute_action(action, identity, run_id)
            summary.record(result)
            self._log_result(result, identity, run_id)

        summary.finalize()

        log_reconciliation_event(
            ReconciliationAuditEvent.SYNC_COMPLETED,
            identity,
            summary.counts(),
            run_id=run_id
        )
        return summary

    async def _execute_action(self, action: TargetAction, identity: str, run_id: str) -> ActionResult:
        date_check = validate_and_normalize_date(action.expense.date)
        if not date_check.valid:
            logger.warning(f"Skipped (invalid date): {date_check.error}", extra={"run_id": run_id})
            return ActionResult(
                action=action,
                outcome=SyncOutcome.SKIPPED_NON_RETRYABLE,
                error=f"Date validation failed: {date_check.error}",
                reason=SkipReason.VALIDATION_ERROR,
                error_category=ErrorCategory.VALIDATION.value
            )

        expense = action.expense.model_copy(update={"date": date_check.normalized})

        try:
            record = await execute_safely(
                lambda: self.create_record(expense, identity),
                operation_name=CREATE_OPERATION,
                args=expense.to_payload(),
                identity=identity,
                cache=self.cache,
                timeout_seconds=self.options.timeout_seconds,
                policy=self.options.retry,
                idempotency_ttl_seconds=self.options.idempotency_ttl_seconds,
                context={"run_id": run_id},
                sleep=self._sleep
            )
        except Exception as e:
            classification = getattr(e, "classification", None) or classify_error(e)

            if not classification.user_facing:
                capture_exception(e, run_id=run_id, category=classification.category.value)

            if classification.retryable:
                outcome, reason = SyncOutcome.FAILED_RETRYABLE, SkipReason.BACKEND_ERROR
            elif classification.category == ErrorCategory.VALIDATION:
                outcome, reason = SyncOutcome.SKIPPED_NON_RETRYABLE, SkipReason.VALIDATION_ERROR
            else:
                outcome, reason = SyncOutcome.SKIPPED_NON_RETRYABLE, SkipReason.NON_RETRYABLE_ERROR

            return ActionResult(
                action=action,
                outcome=outcome,
                error=str(e) or classification.message,
                reason=reason,
                error_category=classification.category.value
            )

        return ActionResult(action=action, outcome=SyncOutcome.SUCCEEDED, record=record)

    def _log_result(self, result: ActionResult, identity: str, run_id: str):
        event = {
            SyncOutcome.SUCCEEDED: ReconciliationAuditEvent.ACTION_SUCCEEDED,
            SyncOutcome.FAILED_RETRYABLE: ReconciliationAuditEvent.ACTION_FAILED,
            SyncOutcome.SKIPPED_NON_RETRYABLE: ReconciliationAuditEvent.ACTION_SKIPPED,
        }[result.outcome]
        log_reconciliation_event(
            event,
            identity,
            {
                "amount": str(result.action.expense.amount),
                "description": result.action.expense.description,
                "reason": result.reason,
                "error": result.error,
                "error_category": result.error_category
            },
            run_id=run_id
        )


def _record_id(record: Any) -> Any:
    if isinstance(record, dict):
        return record.get("id")
    return getattr(record, "external_id", None) or getattr(record, "id", None)


def generate_sync_report(summary: SyncSummary) -> str:
    """Human-readable sync execution report."""
    lines = [
        "=== SYNC EXECUTION REPORT ===",
        "",
        f"Sync ID: {summary.run_id}",
        f"Started: {summary.started_at.isoformat()}",
        f"Completed: {summary.completed_at.isoformat() if summary.completed_at else 'in progress'}",
        "",
        "SUMMARY:",
        f"  Planned: {summary.total_planned}",
        f"  After dedup: {summary.total_after_dedup} ({summary.duplicates_removed} duplicates removed)",
        f"  Attempted: {summary.attempted}",
        f"  Succeeded: {summary.succeeded}",
        f"  Failed (retryable): {summary.failed}",
        f"  Skipped (not retryable): {summary.skipped}",
        "",
    ]

    succeeded = [r for r in summary.results if r.succeeded]
    if succeeded:
        lines.append("SUCCESSFULLY SYNCED:")
        for idx, result in enumerate(succeeded, start=1):
            e = result.action.expense
            lines.append(f"  {idx}. {e.amount:.2f} - {e.description}")
            lines.append(f"     Created expense ID: {_record_id(result.record)}")
        lines.append("")

    if summary.errors:
        lines.append("FAILED TO SYNC (safe to retry):")
        for idx, result in enumerate(summary.errors, start=1):
            e = result.action.expense
            lines.append(f"  {idx}. {e.amount:.2f} - {e.description}")
            lines.append(f"     Reason: {result.error}")
        lines.append("")

    if summary.skipped_details:
        lines.append("SKIPPED (fix the data before retrying):")
        for idx, result in enumerate(summary.skipped_details, start=1):
            e = result.action.expense
            lines.append(f"  {idx}. {e.amount:.2f} - {e.description}")
            lines.append(f"     Reason: {result.error}")
        lines.append("")

    return "\n".join(lines)
