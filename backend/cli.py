"""CLI entry point for the expense reconciler.

Usage:
    # Preview: diff + plan, nothing is written
    expense-reconcile extracted.json --identity 42 --dry-run

    # Full run against the configured expense backend
    expense-reconcile extracted.json --identity 42

    # Against the in-memory backend seeded from a JSON file
    expense-reconcile extracted.json --identity 42 --mock-target app.json
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import httpx

from config import get_settings
from database import dispose_engine, get_session_factory
from logging_config import setup_logging
from reconciliation.matching_rules.expense_rules import find_duplicates, generate_summary_report
from reconciliation.models import Expense, ExpenseSide
from reconciliation.rules import ReconciliationConfig
from reconciliation.services.planner import summarize_plan
from reconciliation.services.reconciliation_service import ReconciliationService
from reconciliation.services.sync_executor import generate_sync_report
from sentry_integration import init_sentry
from services.expense_backend import ExpenseBackendClient, MockExpenseBackend
from utils.exceptions import ExpenseSyncError

log = logging.getLogger(__name__)


def load_records(path: Path) -> List[Dict[str, Any]]:
    """Read a JSON list of expenses, or an object with an "expenses" list."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("expenses", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"{path} must contain a list of expenses")
    return data


async def _run(
    source: List[Dict[str, Any]],
    identity: str,
    dry_run: bool,
    mock_target: Optional[List[Dict[str, Any]]],
    as_json: bool
) -> int:
    settings = get_settings()
    config = ReconciliationConfig.from_settings(settings)

    if mock_target is not None:
        backend = MockExpenseBackend(expenses=mock_target)
    else:
        backend = ExpenseBackendClient.from_settings(settings)

    # audit rows are persisted only when a database is configured
    db = get_session_factory()() if settings.DATABASE_URL else None

    try:
        service = ReconciliationService(backend, config, db=db)
        result = await service.run_reconciliation(source, identity, dry_run=dry_run)
    finally:
        await backend.aclose()
        if db is not None:
            await db.close()
            await dispose_engine()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        click.echo(generate_summary_report(result.diff))
        click.echo("")
        click.echo(summarize_plan(result.plan))
        if result.sync is not None:
            click.echo("")
            click.echo(generate_sync_report(result.sync))

    if result.sync is not None and result.sync.failed:
        return 2
    return 0


@click.command()
@click.argument("source_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--identity", required=True, help="Owner of the target expenses")
@click.option("--dry-run", is_flag=True, help="Stop after planning; nothing is written")
@click.option(
    "--mock-target",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Use an in-memory backend seeded from this JSON file"
)
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.option("--show-duplicates", is_flag=True, help="List near-identical source expenses first")
def main(source_file: Path, identity: str, dry_run: bool, mock_target: Optional[Path], as_json: bool, show_duplicates: bool):
    """Reconcile SOURCE_FILE against the expense backend."""
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    source = load_records(source_file)
    target = load_records(mock_target) if mock_target else None

    if show_duplicates:
        groups = find_duplicates([Expense.from_record(r, ExpenseSide.SOURCE) for r in source])
        click.echo(f"Near-identical groups in source: {len(groups)}")
        for idx, group in enumerate(groups, start=1):
            first = group[0]
            click.echo(f"  {idx}. {len(group)} x {first.amount} - {first.description} on {first.date}")
        click.echo("")

    try:
        exit_code = asyncio.run(_run(source, identity, dry_run, target, as_json))
    except (ExpenseSyncError, httpx.HTTPError) as e:
        log.error(f"Reconciliation did not start: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
