"""
Unit Tests for Configuration

Tests environment settings and the reconciliation configuration record
built from them.

Run with: pytest tests/test_config.py -v
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import Settings
from database import connection
from database.connection import dispose_engine, get_engine, get_session_factory
from reconciliation.rules import DEFAULT_CONFIG, PlanningRules, ReconciliationConfig
from utils.exceptions import ConfigurationError


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Test settings defaults and validation."""

    def test_defaults(self):
        settings = make_settings()

        assert settings.MATCH_AMOUNT_TOLERANCE == 0.01
        assert settings.RECON_DEFAULT_CATEGORY == "Other"
        assert settings.validate_production_config() == []

    def test_production_requires_token(self):
        settings = make_settings(ENVIRONMENT="production", EXPENSE_BACKEND_URL="https://expenses.example.com/api")
        assert "EXPENSE_BACKEND_TOKEN is required in production" in settings.validate_production_config()

    def test_production_rejects_localhost(self):
        settings = make_settings(ENVIRONMENT="production", EXPENSE_BACKEND_TOKEN="t")
        errors = settings.validate_production_config()
        assert "EXPENSE_BACKEND_URL cannot point to localhost in production" in errors

    def test_inconsistent_thresholds(self):
        settings = make_settings(RECON_MIN_AMOUNT=50, RECON_MAX_AUTO_SYNC_AMOUNT=10)
        assert "RECON_MIN_AMOUNT cannot exceed RECON_MAX_AUTO_SYNC_AMOUNT" in settings.validate_production_config()

    def test_debug_enabled_in_development(self):
        assert make_settings(ENVIRONMENT="development").debug_enabled is True
        assert make_settings(ENVIRONMENT="staging").debug_enabled is False


class TestReconciliationConfig:
    """Test the configuration record."""

    def test_from_default_settings_matches_defaults(self):
        config = ReconciliationConfig.from_settings(make_settings())

        assert config.matching == DEFAULT_CONFIG.matching
        assert config.planning == DEFAULT_CONFIG.planning
        assert config.sync.inter_action_delay_seconds == 0.1
        assert config.sync.retry.max_retries == 2

    def test_overrides_from_settings(self):
        config = ReconciliationConfig.from_settings(make_settings(
            MATCH_AMOUNT_TOLERANCE=0.5,
            MATCH_REQUIRE_SAME_DATE=False,
            RECON_DUPLICATE_DETECTION=False,
            RECON_MIN_AMOUNT=5,
            SYNC_INTER_ACTION_DELAY_MS=250,
            SYNC_MAX_RETRIES=4
        ))

        assert config.matching.amount_tolerance == Decimal("0.5")
        assert config.matching.require_same_date is False
        assert config.planning.allow_duplicate_descriptions is True
        assert config.planning.min_amount_threshold == Decimal("5")
        assert config.sync.inter_action_delay_seconds == 0.25
        assert config.sync.retry.max_retries == 4

    def test_with_overrides_keeps_other_sections(self):
        config = DEFAULT_CONFIG.with_overrides(planning=PlanningRules(default_category="Misc"))

        assert config.planning.default_category == "Misc"
        assert config.matching is DEFAULT_CONFIG.matching
        assert DEFAULT_CONFIG.planning.default_category == "Other"

    def test_config_is_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_CONFIG.matching.amount_tolerance = Decimal("1")

    def test_to_dict(self):
        data = DEFAULT_CONFIG.to_dict()
        assert set(data) == {"matching", "planning", "sync"}
        assert data["sync"]["retry"]["max_retries"] == DEFAULT_CONFIG.sync.retry.max_retries


class TestDatabase:
    """Test the optional audit database."""

    def test_engine_requires_url(self):
        with patch("database.connection.get_settings", return_value=make_settings(DATABASE_URL="")):
            with pytest.raises(ConfigurationError, match="DATABASE_URL"):
                get_engine()

    @pytest.mark.asyncio
    async def test_session_factory_and_dispose(self):
        engine = MagicMock(dispose=AsyncMock())
        settings = make_settings(DATABASE_URL="postgresql+asyncpg://localhost/audit")

        with patch("database.connection.get_settings", return_value=settings), \
                patch("database.connection.create_async_engine", return_value=engine) as mock_create:
            assert get_session_factory() is not None
            assert get_engine() is engine
            await dispose_engine()

        mock_create.assert_called_once()
        engine.dispose.assert_awaited_once()
        assert connection._engine is None
        assert connection._session_factory is None
