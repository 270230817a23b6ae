"""canvass_etl.cli

Unified CLI entrypoint.

Modes (--mode):
  address_refresh — reconcile source-of-record addresses into the target store
  donations       — validate and load donation CSVs, routing rejects per owner

Connection parameters and batching come from the environment (or a .env
file); any option given on the command line overrides its variable.

Usage (address_refresh):
    canvass-etl --mode address_refresh --batch-size 1000 --commit-every 10

Usage (donations):
    canvass-etl --mode donations \\
        --csv-path donation1.csv --csv-path donation2.csv \\
        --rejects-dir artifacts/rejects
"""

from __future__ import annotations

import dataclasses
import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
from dotenv import load_dotenv

from canvass_etl.config import EtlSettings, load_settings
from canvass_etl.context import RunContext
from canvass_etl.import_address_refresh import run_address_refresh
from canvass_etl.import_donations import CsvRowSource, run_donations
from canvass_etl.rejections import CsvRejectionSink
from canvass_etl.shared import CanvassEtlError, RunCounters, write_run_report
from canvass_etl.store import PgSourceReader, open_target_store


def _build_settings(
    mode: str,
    target_dsn: str | None,
    source_dsn: str | None,
    batch_size: int | None,
    commit_every: int | None,
    rejects_dir: str | None,
    reports_dir: str | None,
) -> EtlSettings:
    env_overrides = {
        "TARGET_DB_DSN": target_dsn,
        "SOURCE_DB_DSN": source_dsn,
    }
    environ = {**os.environ, **{k: v for k, v in env_overrides.items() if v}}
    settings = load_settings(environ, require_source=(mode == "address_refresh"))
    overrides: dict = {}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if commit_every is not None:
        overrides["commit_every"] = commit_every
    if rejects_dir:
        overrides["rejects_dir"] = Path(rejects_dir)
    if reports_dir:
        overrides["reports_dir"] = Path(reports_dir)
    return dataclasses.replace(settings, **overrides) if overrides else settings


@click.command()
@click.option(
    "--mode",
    default="address_refresh",
    type=click.Choice(["address_refresh", "donations"]),
    show_default=True,
    help="Ingestion mode",
)
@click.option("--target-dsn", default=None, help="Target store DSN [env: TARGET_DB_DSN]")
@click.option("--source-dsn", default=None, help="[address_refresh] Source DSN [env: SOURCE_DB_DSN]")
@click.option("--batch-size", default=None, type=click.IntRange(min=1), help="[address_refresh] Writes per batch [env: BATCH_SIZE]")
@click.option("--commit-every", default=None, type=click.IntRange(min=1), help="[address_refresh] Batches per checkpoint [env: COMMIT_EVERY]")
@click.option("--csv-path", "csv_paths", multiple=True, type=click.Path(exists=True, dir_okay=False), help="[donations] Donation CSV (repeatable)")
@click.option("--rejects-dir", default=None, type=click.Path(file_okay=False), help="[donations] Output dir for rejected_<owner>.csv [env: REJECTS_DIR]")
@click.option("--reports-dir", default=None, type=click.Path(file_okay=False), help="Output dir for JSON run reports [env: REPORTS_DIR]")
@click.option("--env-file", default=None, type=click.Path(exists=True, dir_okay=False), help="Load variables from this .env file")
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    show_default=True,
)
def main(
    mode: str,
    target_dsn: str | None,
    source_dsn: str | None,
    batch_size: int | None,
    commit_every: int | None,
    csv_paths: tuple[str, ...],
    rejects_dir: str | None,
    reports_dir: str | None,
    env_file: str | None,
    dry_run: bool,
    run_id: str | None,
    log_level: str,
) -> None:
    """Address refresh and donation loading CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()
    counters = RunCounters()

    try:
        settings = _build_settings(
            mode, target_dsn, source_dsn, batch_size, commit_every,
            rejects_dir, reports_dir,
        )
    except CanvassEtlError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    source_paths: dict[str, str] = {}
    row_source = None
    if mode == "donations":
        if not csv_paths:
            click.echo(f"[{run_id}] FATAL: --csv-path is required for donations", err=True)
            sys.exit(1)
        row_source = CsvRowSource(csv_paths)
        try:
            row_source.validate_headers()
        except CanvassEtlError as exc:
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
        source_paths["csv_paths"] = ", ".join(csv_paths)
        source_paths["rejects_dir"] = str(settings.rejects_dir)

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    failed = False
    try:
        with open_target_store(settings.target_dsn) as target:
            ctx = RunContext(
                settings=settings,
                target=target,
                run_id=run_id,
                dry_run=dry_run,
                counters=counters,
                started_at=started_at,
            )
            if mode == "address_refresh":
                run_address_refresh(ctx, PgSourceReader(settings.source_dsn))
            else:
                run_donations(ctx, row_source, CsvRejectionSink(settings.rejects_dir))
    except CanvassEtlError as exc:
        click.echo(f"[{run_id}] FATAL: {type(exc).__name__}: {exc}", err=True)
        counters.warnings.append(f"[{run_id}] fatal: {exc}")
        failed = True

    report_path = write_run_report(
        run_id, started_at, mode, dry_run, source_paths, counters,
        reports_dir=settings.reports_dir,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
