"""
Unit Tests for Logging and Error Tracking Helpers

Run with: pytest tests/test_observability.py -v
"""

import json
import logging
from unittest.mock import patch

from logging_config import JSONFormatter, RunContextFilter
from reconciliation.audit import ReconciliationAuditEvent, log_reconciliation_event
from sentry_integration import capture_exception, filter_sensitive_data, init_sentry, redact_dict


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("reconciliation", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test structured log output."""

    def test_core_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["service"] == "expense-reconciler"
        assert "extra" not in data

    def test_extra_fields(self):
        data = json.loads(JSONFormatter().format(_record(run_id="run-1", amount="5.00")))
        assert data["extra"] == {"run_id": "run-1", "amount": "5.00"}


class TestRunContextFilter:
    """Test ambient run context."""

    def test_fills_missing_context(self):
        context = RunContextFilter()
        context.set_run_context(run_id="run-1", user_id="user-1")

        record = _record()
        context.filter(record)

        assert record.run_id == "run-1"
        assert record.user_id == "user-1"

    def test_explicit_run_id_wins(self):
        context = RunContextFilter()
        context.set_run_context(run_id="run-1")

        record = _record(run_id="sync-9")
        context.filter(record)

        assert record.run_id == "sync-9"

    def test_clear(self):
        context = RunContextFilter()
        context.set_run_context(run_id="run-1")
        context.clear_run_context()

        record = _record()
        context.filter(record)

        assert record.run_id is None


class TestAuditEvent:
    """Test the audit log helper."""

    def test_entry_shape(self, caplog):
        caplog.set_level(logging.INFO, logger="reconciliation.audit")

        entry = log_reconciliation_event(
            ReconciliationAuditEvent.PLAN_CREATED, "user-1", {"approved_for_target": 2}, run_id="run-1"
        )

        assert entry["event"] == "reconciliation.plan_created"
        assert entry["actor"] == "system"
        assert caplog.records[-1].details == {"approved_for_target": 2}


class TestSentryHelpers:
    """Test Sentry setup and scrubbing."""

    def test_init_without_dsn(self):
        with patch.dict("os.environ", {"SENTRY_DSN": ""}):
            assert init_sentry(dsn=None) is False

    def test_redact_nested(self):
        data = {
            "Authorization": "Bearer abc",
            "payload": {"amount": "5.00", "api_key": "k"},
            "items": [{"refresh_token": "r"}],
        }

        assert redact_dict(data) == {
            "Authorization": "[REDACTED]",
            "payload": {"amount": "5.00", "api_key": "[REDACTED]"},
            "items": [{"refresh_token": "[REDACTED]"}],
        }

    def test_filter_event(self):
        event = {
            "request": {"headers": {"authorization": "Bearer abc", "x-user-id": "42"}},
            "extra": {"run_id": "run-1", "token": "t"},
        }

        filtered = filter_sensitive_data(event, {})

        assert filtered["request"]["headers"] == {"authorization": "[REDACTED]", "x-user-id": "42"}
        assert filtered["extra"] == {"run_id": "run-1", "token": "[REDACTED]"}

    def test_capture_exception_returns_event_id(self):
        with patch("sentry_integration.sentry_sdk.capture_exception", return_value="evt-1") as mock_capture:
            event_id = capture_exception(ValueError("boom"), run_id="run-1")

        assert event_id == "evt-1"
        mock_capture.assert_called_once()
