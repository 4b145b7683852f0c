"""
Database Migration: Create Sync Audit Tables

Creates the table holding the reconciliation/sync audit trail.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import get_engine


SQL_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS public.sync_audit_log (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        run_id VARCHAR(64) NOT NULL,
        identity VARCHAR(255) NOT NULL,

        -- Event details
        action VARCHAR(64) NOT NULL,
        actor VARCHAR(100) NOT NULL,

        -- Per-action outcome (NULL for run-level events)
        outcome VARCHAR(32),
        reason VARCHAR(64),
        error_category VARCHAR(32),
        amount DECIMAL(12,2),
        description TEXT,

        -- Metadata
        timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        metadata JSONB,

        CONSTRAINT sync_audit_log_outcome_check
            CHECK (outcome IS NULL OR outcome IN ('SUCCEEDED', 'FAILED_RETRYABLE', 'SKIPPED_NON_RETRYABLE'))
    )
    """,

    "CREATE INDEX IF NOT EXISTS idx_sync_audit_run ON public.sync_audit_log(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_sync_audit_identity ON public.sync_audit_log(identity)",
    "CREATE INDEX IF NOT EXISTS idx_sync_audit_timestamp ON public.sync_audit_log(timestamp)",
]


async def create_tables():
    """Create the sync audit tables."""
    print("Creating sync audit tables...")

    async with get_engine().begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                if "already exists" in str(e).lower():
                    print(f"  Statement {i+1}/{len(SQL_STATEMENTS)} (already exists)")
                else:
                    print(f"  Statement {i+1}/{len(SQL_STATEMENTS)} failed: {e}")

    print("\nSync audit tables created successfully!")


if __name__ == "__main__":
    asyncio.run(create_tables())
