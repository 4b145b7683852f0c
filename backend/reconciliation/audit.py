"""
Reconciliation audit trail events.

Every run emits a strictly ordered sequence of structured log events:
run start, plan creation, one event per executed action, run completion.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    RUN_STARTED = "reconciliation.run_started"
    DIFF_COMPUTED = "reconciliation.diff_computed"
    PLAN_CREATED = "reconciliation.plan_created"
    SYNC_STARTED = "reconciliation.sync_started"
    ACTION_SUCCEEDED = "reconciliation.action_succeeded"
    ACTION_FAILED = "reconciliation.action_failed"
    ACTION_SKIPPED = "reconciliation.action_skipped"
    SYNC_COMPLETED = "reconciliation.sync_completed"
    RUN_COMPLETED = "reconciliation.run_completed"


def log_reconciliation_event(
    event_type: str,
    identity: Optional[str],
    details: Dict[str, Any],
    run_id: Optional[str] = None,
    actor: str = "system"
) -> Dict[str, Any]:
    """Log reconciliation event for audit trail."""
    log_entry = {
        "event": event_type,
        "identity": identity,
        "run_id": run_id,
        "details": details,
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Reconciliation event: {event_type}", extra=log_entry)
    return log_entry
