"""canvass_etl.import_address_refresh

Address refresh pipeline: source-of-record addresses → target address table.

Processing order:
  1. Extract every source row (one query, no delta fetch).
  2. Load the target snapshot once and index it by natural key.
  3. Transform each source row into the target shape.
  4. Reconcile: Insert / Update / unchanged per row.
  5. Write in batches of BATCH_SIZE, checkpoint every COMMIT_EVERY batches,
     final commit at the end (rollback instead under --dry-run).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import click

from canvass_etl.batching import BatchCommitController, CommitSummary
from canvass_etl.context import RunContext
from canvass_etl.normalize import UNKNOWN, normalize_headers, parse_int, trim
from canvass_etl.reconcile import SurrogateIdAllocator, build_index, reconcile
from canvass_etl.records import AddressRecord
from canvass_etl.store import SourceReader


# ---------------------------------------------------------------------------
# Row transform
# ---------------------------------------------------------------------------

def transform_address(raw: Mapping[str, Any]) -> AddressRecord:
    """Map a source-shaped address row onto the target columns.

    street_number parses to int or None; street_type and postal_code fall back
    to the literal "UNKNOWN"; unit and direction fall back to None.
    """
    row = normalize_headers(raw)
    return AddressRecord(
        unit_num=trim(row.get("UnitNumber")),
        street_number=parse_int(row.get("StreetNumber")),
        street_name=trim(row.get("StreetName")),
        street_type=trim(row.get("StreetType")) or UNKNOWN,
        street_direction=trim(row.get("StreetDirection")),
        postal_code=trim(row.get("PostalCode")) or UNKNOWN,
        city=trim(row.get("City")),
        province=trim(row.get("Province")),
    )


# ---------------------------------------------------------------------------
# Main run entry point
# ---------------------------------------------------------------------------

def run_address_refresh(ctx: RunContext, source: SourceReader) -> CommitSummary:
    run_id = ctx.run_id
    counters = ctx.counters

    click.echo(f"[{run_id}] Starting address refresh process...")
    source_rows = source.fetch_all()
    counters.rows_read += len(source_rows)
    click.echo(f"[{run_id}] Extracted {len(source_rows)} addresses from source")

    existing = ctx.target.fetch_all_existing()
    click.echo(f"[{run_id}] Found {len(existing)} existing addresses in target")
    index = build_index(existing)

    incoming = [transform_address(row) for row in source_rows]
    results = reconcile(index, incoming)
    counters.addresses_unchanged += len(incoming) - len(results)

    controller = BatchCommitController(
        ctx.target,
        SurrogateIdAllocator(ctx.target),
        dry_run=ctx.dry_run,
    )
    summary = controller.run(
        results,
        batch_size=ctx.settings.batch_size,
        commit_every=ctx.settings.commit_every,
    )

    counters.addresses_inserted += summary.inserted
    counters.addresses_updated += summary.updated
    counters.write_errors += summary.errored
    counters.checkpoints_committed += len(summary.checkpoints)
    for outcome in summary.errors():
        counters.warnings.append(
            f"[{run_id}] {outcome.action} at row {outcome.position}: {outcome.error}"
        )

    prefix = f"[{run_id}] [dry-run]" if ctx.dry_run else f"[{run_id}]"
    click.echo(
        f"{prefix} Address refresh completed. Updated: {summary.updated}, "
        f"Inserted: {summary.inserted}, Errors: {summary.errored}, "
        f"Unchanged: {counters.addresses_unchanged}"
    )
    return summary
