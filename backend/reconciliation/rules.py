"""
Reconciliation Rules

One explicit, immutable configuration record for a reconciliation run:
- MatchingOptions: tolerances used by the diff engine
- PlanningRules: validation thresholds, toggles and defaults used by the planner
- SyncOptions: timeout, retry/backoff, cache TTL and pacing used by the executor

Build from environment settings with ReconciliationConfig.from_settings().
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict

from utils.retry import RetryPolicy


@dataclass(frozen=True)
class MatchingOptions:
    """Tolerances for the pairwise match test."""
    amount_tolerance: Decimal = Decimal("0.01")
    require_same_date: bool = True
    min_description_similarity: float = 0.5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_tolerance": str(self.amount_tolerance),
            "require_same_date": self.require_same_date,
            "min_description_similarity": self.min_description_similarity
        }


# Used by find_duplicates() within a single list
DUPLICATE_GROUP_OPTIONS = MatchingOptions(
    amount_tolerance=Decimal("0"),
    require_same_date=True,
    min_description_similarity=0.8
)


@dataclass(frozen=True)
class PlanningRules:
    """Rules deciding which source-only expenses get written to the target."""
    min_amount_threshold: Decimal = Decimal("1.00")
    max_auto_sync_amount: Decimal = Decimal("10000.00")
    allow_undated_expenses: bool = True
    allow_duplicate_descriptions: bool = False
    duplicate_amount_tolerance: Decimal = Decimal("0.01")
    default_category: str = "Other"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min_amount_threshold": str(self.min_amount_threshold),
            "max_auto_sync_amount": str(self.max_auto_sync_amount),
            "allow_undated_expenses": self.allow_undated_expenses,
            "allow_duplicate_descriptions": self.allow_duplicate_descriptions,
            "duplicate_amount_tolerance": str(self.duplicate_amount_tolerance),
            "default_category": self.default_category
        }


@dataclass(frozen=True)
class SyncOptions:
    """Execution parameters for the sync executor."""
    timeout_seconds: float = 30.0
    inter_action_delay_seconds: float = 0.1
    idempotency_ttl_seconds: float = 24 * 60 * 60
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeout_seconds": self.timeout_seconds,
            "inter_action_delay_seconds": self.inter_action_delay_seconds,
            "idempotency_ttl_seconds": self.idempotency_ttl_seconds,
            "retry": self.retry.to_dict()
        }


@dataclass(frozen=True)
class ReconciliationConfig:
    """Complete configuration for one reconciliation run."""
    matching: MatchingOptions = field(default_factory=MatchingOptions)
    planning: PlanningRules = field(default_factory=PlanningRules)
    sync: SyncOptions = field(default_factory=SyncOptions)

    @classmethod
    def from_settings(cls, settings) -> "ReconciliationConfig":
        """Build the configuration record from config.Settings."""
        return cls(
            matching=MatchingOptions(
                amount_tolerance=Decimal(str(settings.MATCH_AMOUNT_TOLERANCE)),
                require_same_date=settings.MATCH_REQUIRE_SAME_DATE,
                min_description_similarity=settings.MATCH_MIN_DESCRIPTION_SIMILARITY
            ),
            planning=PlanningRules(
                min_amount_threshold=Decimal(str(settings.RECON_MIN_AMOUNT)),
                max_auto_sync_amount=Decimal(str(settings.RECON_MAX_AUTO_SYNC_AMOUNT)),
                allow_undated_expenses=settings.RECON_ALLOW_UNDATED_EXPENSES,
                allow_duplicate_descriptions=not settings.RECON_DUPLICATE_DETECTION,
                default_category=settings.RECON_DEFAULT_CATEGORY
            ),
            sync=SyncOptions(
                timeout_seconds=settings.SYNC_TIMEOUT_SECONDS,
                inter_action_delay_seconds=settings.SYNC_INTER_ACTION_DELAY_MS / 1000,
                idempotency_ttl_seconds=settings.IDEMPOTENCY_TTL_SECONDS,
                retry=RetryPolicy(
                    max_retries=settings.SYNC_MAX_RETRIES,
                    base_delay_ms=settings.SYNC_BASE_DELAY_MS,
                    max_delay_ms=settings.SYNC_MAX_DELAY_MS
                )
            )
        )

    def with_overrides(self, **sections) -> "ReconciliationConfig":
        """Copy with whole sections replaced (matching=..., planning=..., sync=...)."""
        return replace(self, **sections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matching": self.matching.to_dict(),
            "planning": self.planning.to_dict(),
            "sync": self.sync.to_dict()
        }


DEFAULT_CONFIG = ReconciliationConfig()
