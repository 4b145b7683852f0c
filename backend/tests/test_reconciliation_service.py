"""
Unit Tests for the Reconciliation Service

Tests the end-to-end run against the in-memory backend:
- Dry run writes nothing
- Applied run creates only approved expenses, then converges
- Audit events are emitted in order and persisted when a session is given
- Audit persistence failures never abort a run

Run with: pytest tests/test_reconciliation_service.py -v
"""

import logging
from unittest.mock import AsyncMock

import pytest

from reconciliation.audit import ReconciliationAuditEvent
from reconciliation.rules import ReconciliationConfig, SyncOptions
from reconciliation.services.reconciliation_service import ReconciliationService
from services.expense_backend import MockExpenseBackend
from utils.retry import RetryPolicy

CONFIG = ReconciliationConfig().with_overrides(
    sync=SyncOptions(
        timeout_seconds=1.0,
        inter_action_delay_seconds=0,
        retry=RetryPolicy(max_retries=1, base_delay_ms=0, max_delay_ms=0, jitter_ratio=0)
    )
)

SOURCE = [
    {"amount": "12.50", "description": "Team lunch", "date": "2026-02-01", "category": "Food"},
    {"amount": 30, "description": "Airport taxi", "date": "Feb 2, 2026", "category": "Transport"},
    {"amount": "0.40", "description": "Parking coin", "date": "2026-02-02", "category": "Transport"},
]

TARGET = [
    {"amount": "12.50", "description": "Team lunch", "date": "2026-02-01", "category_name": "Food"},
    {"amount": "55.00", "description": "Electricity", "date": "2026-01-28", "category_name": "Bills"},
]


@pytest.fixture
def backend():
    return MockExpenseBackend(expenses=[dict(r) for r in TARGET])


@pytest.fixture
def service(backend):
    return ReconciliationService(backend, config=CONFIG, sleep=AsyncMock())


class TestDryRun:
    """Test preview runs."""

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, service, backend):
        result = await service.preview(SOURCE, "user-1")

        assert result.dry_run is True
        assert result.sync is None
        assert backend.create_calls == 0
        assert result.plan.summary.approved_for_target == 1
        assert result.plan.summary.rejected == 1
        assert result.plan.summary.approved_for_source == 1

    @pytest.mark.asyncio
    async def test_identity_required(self, service):
        with pytest.raises(ValueError):
            await service.run_reconciliation(SOURCE, "")


class TestApply:
    """Test applied runs."""

    @pytest.mark.asyncio
    async def test_creates_approved_expenses(self, service, backend):
        result = await service.run_reconciliation(SOURCE, "user-1")

        assert result.sync.succeeded == 1
        assert backend.create_calls == 1
        created = backend.expenses[-1]
        assert created["description"] == "Airport taxi"
        assert created["date"] == "2026-02-02"
        assert created["amount"] == "30.00"

    @pytest.mark.asyncio
    async def test_second_run_converges(self, service, backend):
        await service.run_reconciliation(SOURCE, "user-1")
        second = await service.run_reconciliation(SOURCE, "user-1")

        assert backend.create_calls == 1
        assert second.sync is None
        assert second.plan.summary.total_matched == 2
        assert second.plan.add_to_target == ()

    @pytest.mark.asyncio
    async def test_result_to_dict(self, service):
        data = (await service.run_reconciliation(SOURCE, "user-1")).to_dict()

        assert data["identity"] == "user-1"
        assert data["sync"]["succeeded"] == 1
        assert data["plan"]["mode"] == "BI_DIRECTIONAL"

    def test_compare_accepts_mappings(self, service):
        diff = service.compare(SOURCE, TARGET)

        assert len(diff.matched) == 1
        assert len(diff.source_only) == 2
        assert len(diff.target_only) == 1


class TestAudit:
    """Test audit events and persistence."""

    @pytest.mark.asyncio
    async def test_event_order(self, service, caplog):
        caplog.set_level(logging.INFO, logger="reconciliation.audit")

        result = await service.run_reconciliation(SOURCE, "user-1")

        events = [r.event for r in caplog.records if r.name == "reconciliation.audit"]
        assert events == [
            ReconciliationAuditEvent.RUN_STARTED,
            ReconciliationAuditEvent.DIFF_COMPUTED,
            ReconciliationAuditEvent.PLAN_CREATED,
            ReconciliationAuditEvent.SYNC_STARTED,
            ReconciliationAuditEvent.ACTION_SUCCEEDED,
            ReconciliationAuditEvent.SYNC_COMPLETED,
            ReconciliationAuditEvent.RUN_COMPLETED,
        ]
        run_ids = {r.run_id for r in caplog.records if r.name == "reconciliation.audit"}
        assert run_ids == {result.run_id}

    @pytest.mark.asyncio
    async def test_persisted_when_session_given(self, backend):
        db = AsyncMock()
        service = ReconciliationService(backend, config=CONFIG, db=db, sleep=AsyncMock())

        await service.run_reconciliation(SOURCE, "user-1")

        # plan created, one action, run completed
        assert db.execute.await_count == 3
        assert db.commit.await_count == 3

        params = db.execute.await_args_list[1].args[1]
        assert params["action"] == "reconciliation.action_succeeded"
        assert params["outcome"] == "SUCCEEDED"
        assert params["identity"] == "user-1"

    @pytest.mark.asyncio
    async def test_dry_run_persists_plan_only(self, backend):
        db = AsyncMock()
        service = ReconciliationService(backend, config=CONFIG, db=db, sleep=AsyncMock())

        await service.preview(SOURCE, "user-1")

        assert db.execute.await_count == 2
        actions = [c.args[1]["action"] for c in db.execute.await_args_list]
        assert actions == [ReconciliationAuditEvent.PLAN_CREATED, ReconciliationAuditEvent.RUN_COMPLETED]

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_abort(self, backend, caplog):
        db = AsyncMock()
        db.execute.side_effect = RuntimeError("connection lost")
        service = ReconciliationService(backend, config=CONFIG, db=db, sleep=AsyncMock())

        with caplog.at_level(logging.WARNING):
            result = await service.run_reconciliation(SOURCE, "user-1")

        assert result.sync.succeeded == 1
        assert db.rollback.await_count == 3
        assert "Failed to store audit log" in caplog.text
