"""
Reconciliation Service

Orchestrates one reconciliation run:
- Fetch the complete current target collection
- Diff source against target
- Plan (pure, usable as a dry-run preview)
- Execute the target-side actions
- Audit logging (structured logs, optionally persisted)

The service owns the idempotency cache so that repeated runs in the same
process share it; re-running a partially failed reconciliation only
re-applies actions that did not succeed.
"""

import uuid
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import clear_run_context, set_run_context
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from reconciliation.matching_rules.expense_rules import DiffResult, compare_expenses
from reconciliation.models import Expense, ExpenseSide
from reconciliation.rules import ReconciliationConfig
from reconciliation.services.planner import ReconciliationPlan, create_reconciliation_plan
from reconciliation.services.sync_executor import SyncExecutor, SyncSummary
from utils.idempotency import IdempotencyCache
from utils.retry import Sleep

logger = logging.getLogger(__name__)

ExpenseInput = Union[Expense, Mapping[str, Any]]


@dataclass
class ReconciliationRunResult:
    """Result of a reconciliation run."""
    run_id: str
    identity: str
    dry_run: bool
    diff: DiffResult
    plan: ReconciliationPlan
    sync: Optional[SyncSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "identity": self.identity,
            "dry_run": self.dry_run,
            "diff": self.diff.to_dict(),
            "plan": self.plan.to_dict(),
            "sync": self.sync.to_dict() if self.sync else None
        }


def _as_expenses(records: Iterable[ExpenseInput], side: ExpenseSide) -> List[Expense]:
    return [
        r if isinstance(r, Expense) else Expense.from_record(r, side)
        for r in records
    ]


class ReconciliationService:
    """
    Service reconciling document-derived expenses with the expense backend.

    Args:
        backend: Collaborator exposing ``list_expenses(identity)`` and
            ``create_expense(normalized_expense, identity)``
        config: Immutable configuration record for every run
        cache: Idempotency cache (one is created when omitted)
        db: Optional session; when given, audit events are persisted
    """

    def __init__(
        self,
        backend,
        config: Optional[ReconciliationConfig] = None,
        cache: Optional[IdempotencyCache] = None,
        db: Optional[AsyncSession] = None,
        sleep: Optional[Sleep] = None
    ):
        self.backend = backend
        self.config = config or ReconciliationConfig()
        self.cache = cache if cache is not None else IdempotencyCache(self.config.sync.idempotency_ttl_seconds)
        self.db = db
        executor_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.executor = SyncExecutor(
            backend.create_expense,
            cache=self.cache,
            options=self.config.sync,
            **executor_kwargs
        )

    def compare(self, source: Iterable[ExpenseInput], target: Iterable[ExpenseInput]) -> DiffResult:
        return compare_expenses(
            _as_expenses(source, ExpenseSide.SOURCE),
            _as_expenses(target, ExpenseSide.TARGET),
            self.config.matching
        )

    async def preview(self, source_expenses: Iterable[ExpenseInput], identity: str) -> ReconciliationRunResult:
        """Diff and plan without writing anything."""
        return await self.run_reconciliation(source_expenses, identity, dry_run=True)

    async def run_reconciliation(
        self,
        source_expenses: Iterable[ExpenseInput],
        identity: str,
        dry_run: bool = False
    ) -> ReconciliationRunResult:
        """
        Run a full reconciliation for one caller.

        Args:
            source_expenses: Document-derived expenses
            identity: Caller identity (owner of the target expenses)
            dry_run: Stop after planning

        Returns:
            ReconciliationRunResult with the diff, plan and sync summary
        """
        if not identity:
            raise ValueError("identity is required")

        run_id = str(uuid.uuid4())
        set_run_context(run_id=run_id, user_id=identity)

        try:
            log_reconciliation_event(
                ReconciliationAuditEvent.RUN_STARTED,
                identity,
                {"dry_run": dry_run, "config": self.config.to_dict()},
                run_id=run_id
            )

            source = _as_expenses(source_expenses, ExpenseSide.SOURCE)
            target = await self.backend.list_expenses(identity)

            diff = compare_expenses(source, target, self.config.matching)
            log_reconciliation_event(
                ReconciliationAuditEvent.DIFF_COMPUTED,
                identity,
                {
                    "matched": len(diff.matched),
                    "source_only": len(diff.source_only),
                    "target_only": len(diff.target_only),
                    "match_rate": diff.match_rate
                },
                run_id=run_id
            )

            plan = create_reconciliation_plan(diff, target, self.config.planning)
            log_reconciliation_event(
                ReconciliationAuditEvent.PLAN_CREATED,
                identity,
                plan.summary.to_dict(),
                run_id=run_id
            )
            await self._store_audit_log(
                run_id, identity, ReconciliationAuditEvent.PLAN_CREATED, plan.summary.to_dict()
            )

            sync = None
            if not dry_run and plan.add_to_target:
                sync = await self.executor.execute(plan.add_to_target, identity, run_id=run_id)
                for result in sync.results:
                    await self._store_audit_log(
                        run_id,
                        identity,
                        f"reconciliation.action_{result.outcome.value.lower()}",
                        {
                            "outcome": result.outcome.value,
                            "reason": result.reason,
                            "error_category": result.error_category,
                            "amount": str(result.action.expense.amount),
                            "description": result.action.expense.description,
                            "error": result.error
                        }
                    )
            elif not dry_run:
                logger.info("Nothing to apply to the target", extra={"run_id": run_id})

            completed = {
                "dry_run": dry_run,
                "plan": plan.summary.to_dict(),
                "sync": sync.counts() if sync else None
            }
            log_reconciliation_event(ReconciliationAuditEvent.RUN_COMPLETED, identity, completed, run_id=run_id)
            await self._store_audit_log(run_id, identity, ReconciliationAuditEvent.RUN_COMPLETED, completed)

            return ReconciliationRunResult(
                run_id=run_id,
                identity=identity,
                dry_run=dry_run,
                diff=diff,
                plan=plan,
                sync=sync
            )
        finally:
            clear_run_context()

    async def _store_audit_log(
        self,
        run_id: str,
        identity: str,
        action: str,
        details: Dict[str, Any],
        actor: str = "system"
    ):
        """Store an entry in the sync audit log. Failures never abort a run."""
        if self.db is None:
            return

        try:
            query = text("""
                INSERT INTO public.sync_audit_log (
                    id, run_id, identity, action, actor,
                    outcome, reason, error_category,
                    amount, description,
                    timestamp, metadata
                ) VALUES (
                    :id, :run_id, :identity, :action, :actor,
                    :outcome, :reason, :error_category,
                    :amount, :description,
                    :timestamp, :metadata
                )
            """)

            await self.db.execute(query, {
                "id": str(uuid.uuid4()),
                "run_id": run_id,
                "identity": identity,
                "action": action,
                "actor": actor,
                "outcome": details.get("outcome"),
                "reason": details.get("reason"),
                "error_category": details.get("error_category"),
                "amount": details.get("amount"),
                "description": details.get("description"),
                "timestamp": datetime.now(timezone.utc),
                "metadata": json.dumps(details, default=str)
            })

            await self.db.commit()
        except Exception as e:
            logger.warning(f"Failed to store audit log: {e}")
            try:
                await self.db.rollback()
            except Exception as rollback_error:
                logger.warning(f"Audit log rollback failed: {rollback_error}")
