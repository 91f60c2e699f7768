"""ffa_calendar_etl.cli

Command-line entry point for one FFA calendar harvest run.

Usage:
    ffa-calendar-etl --db-dsn "$DB_DSN" --config-path config/harvest.yml
    ffa-calendar-etl --db-dsn "$DB_DSN" --dry-run --regions-per-run 1

Exit codes:
    0  run finished (including "cooldown active, nothing to do")
    1  invalid config, catalog unavailable, DB errors, or every unit failed
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click

from ffa_calendar_etl.catalog import (
    CatalogUnavailable,
    PostgresCatalog,
    PostgresProgressStore,
    connect,
)
from ffa_calendar_etl.config import ConfigValidationError, load_harvest_config
from ffa_calendar_etl.harvest import HarvestCounters, build_harvest_report, run_harvest
from ffa_calendar_etl.progress import JsonProgressStore, ProgressStore
from ffa_calendar_etl.scraper import FfaCalendarClient, HumanDelay
from ffa_calendar_etl.shared import write_run_report

DEFAULT_AGENT_NAME = "ffa-calendar-harvester"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.command()
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
@click.option(
    "--config-path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Harvest YAML config; built-in defaults when omitted",
)
@click.option(
    "--progress-path",
    default=None,
    type=click.Path(dir_okay=False),
    help="JSON progress file; progress is kept in agent_state when omitted",
)
@click.option("--agent-name", default=DEFAULT_AGENT_NAME, show_default=True)
@click.option("--regions-per-run", default=None, type=int, help="Override regions_per_run")
@click.option("--months-per-run", default=None, type=int, help="Override months_per_run")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    db_dsn: str,
    config_path: str | None,
    progress_path: str | None,
    agent_name: str,
    regions_per_run: int | None,
    months_per_run: int | None,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
) -> None:
    """Harvest the next FFA calendar work units into pending proposals."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()

    click.echo(f"[{run_id}] Starting ffa_calendar harvest (dry_run={dry_run})")

    try:
        config = load_harvest_config(Path(config_path) if config_path else None)
        config = config.with_overrides(
            regions_per_run=regions_per_run,
            months_per_run=months_per_run,
        )
    except ConfigValidationError as exc:
        click.echo(f"[{run_id}] ERROR: invalid harvest config: {exc}", err=True)
        sys.exit(1)
    click.echo(
        f"[{run_id}] Config {config.version}: {len(config.regions)} region(s), "
        f"{config.regions_per_run} region(s) x {config.months_per_run} month(s) per run"
    )

    counters = HarvestCounters()
    client = FfaCalendarClient(
        delay=HumanDelay(delay_ms=config.human_delay_ms),
        max_pages=config.max_listing_pages,
        max_competitions=config.max_competitions_per_month,
    )
    fatal: str | None = None
    try:
        conn = connect(db_dsn)
    except CatalogUnavailable as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    try:
        store: ProgressStore
        if progress_path:
            store = JsonProgressStore(Path(progress_path))
        else:
            store = PostgresProgressStore(conn, agent_name)
        progress = run_harvest(
            client,
            PostgresCatalog(conn),
            store,
            config,
            counters,
            agent_name,
            dry_run=dry_run,
        )
        click.echo(
            f"[{run_id}] Cursor: {progress.current_region or '-'} / "
            f"{progress.current_month or '-'}, "
            f"{len(progress.completed_regions)} region(s) complete"
        )
    except CatalogUnavailable as exc:
        fatal = str(exc)
    finally:
        conn.close()

    report = build_harvest_report(counters, dry_run=dry_run)
    click.echo(report)

    report_path = write_run_report(
        run_id, started_at, "ffa_calendar", dry_run,
        {
            "config_path": config_path,
            "config_version": config.version,
            "config_hash": config.yaml_hash,
            "progress_path": progress_path,
            "agent_name": agent_name,
        },
        counters,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if fatal:
        click.echo(f"[{run_id}] FATAL: {fatal}", err=True)
        sys.exit(1)
    if counters.db_errors > 0 and not dry_run:
        click.echo(
            f"[{run_id}] {counters.db_errors} DB errors, exiting non-zero",
            err=True,
        )
        sys.exit(1)
    if counters.units_attempted and counters.units_failed == counters.units_attempted:
        click.echo(f"[{run_id}] Every work unit failed, exiting non-zero", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
