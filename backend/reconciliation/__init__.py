"""
Expense Reconciliation Module

Provides the reconciliation-and-execution pipeline:
- Fuzzy diff of document-derived vs application-of-record expenses
- Deterministic, additive-only planning with validation and duplicate suppression
- Resilient, idempotent execution of target-side writes
- Audit trail for all operations
"""

from reconciliation.models import Expense, ExpenseSide, NormalizedExpense
from reconciliation.rules import (
    MatchingOptions,
    PlanningRules,
    SyncOptions,
    ReconciliationConfig,
    DEFAULT_CONFIG
)
from reconciliation.matching_rules.expense_rules import (
    ExpenseMatchingRules,
    DiffResult,
    MatchedPair,
    compare_expenses,
    find_duplicates,
    generate_summary_report
)
from reconciliation.services.planner import (
    ReconciliationPlanner,
    ReconciliationPlan,
    create_reconciliation_plan,
    summarize_plan
)
from reconciliation.services.sync_executor import (
    SyncExecutor,
    SyncOutcome,
    SyncSummary,
    generate_sync_report,
    validate_sync_prerequisites
)
from reconciliation.services.reconciliation_service import (
    ReconciliationService,
    ReconciliationRunResult
)

__all__ = [
    # Models
    'Expense',
    'ExpenseSide',
    'NormalizedExpense',
    # Rules
    'MatchingOptions',
    'PlanningRules',
    'SyncOptions',
    'ReconciliationConfig',
    'DEFAULT_CONFIG',
    # Matching
    'ExpenseMatchingRules',
    'DiffResult',
    'MatchedPair',
    'compare_expenses',
    'find_duplicates',
    'generate_summary_report',
    # Planning
    'ReconciliationPlanner',
    'ReconciliationPlan',
    'create_reconciliation_plan',
    'summarize_plan',
    # Execution
    'SyncExecutor',
    'SyncOutcome',
    'SyncSummary',
    'generate_sync_report',
    'validate_sync_prerequisites',
    # Service
    'ReconciliationService',
    'ReconciliationRunResult'
]
