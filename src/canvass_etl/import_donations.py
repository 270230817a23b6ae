"""canvass_etl.import_donations

Donation CSV ingestion with validation and per-owner rejection routing.

Consumes one or more donation CSV files with the headers:
  donation_id, donor_name, address_id, donation_date, donation_amount, volunteer_id

Per row:
  1. Parse into a Donation (unparseable values become None).
  2. Validate (fail-fast, see canvass_etl.validation).
  3. Valid → INSERT INTO donation.  Invalid, or refused by the store → the
     original raw row is routed to its owner's rejection bucket.

After the last row of the last file: commit (rollback under --dry-run), then
flush every rejection bucket to rejected_<owner>.csv.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

import click

from canvass_etl.context import RunContext
from canvass_etl.normalize import (
    normalize_headers,
    parse_int,
    parse_iso_date,
    parse_name_parts,
    parse_numeric,
)
from canvass_etl.records import Donation
from canvass_etl.rejections import RejectionRouter, RejectionSink
from canvass_etl.shared import (
    CanvassEtlError,
    SourceFormatError,
    StoreConnectionError,
    StoreError,
    WriteError,
)
from canvass_etl.validation import FailureReason, ValidationPipeline, donation_pipeline

log = logging.getLogger(__name__)

REQUIRED_HEADERS = frozenset({
    "donation_id", "donor_name", "address_id",
    "donation_date", "donation_amount", "volunteer_id",
})


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_donation(raw: Mapping[str, Any]) -> Donation:
    row = normalize_headers(raw)
    first, last = parse_name_parts(row.get("donor_name"))
    return Donation(
        donation_id=parse_int(row.get("donation_id")),
        donor_first_name=first,
        donor_last_name=last,
        address_id=parse_int(row.get("address_id")),
        donation_date=parse_iso_date(row.get("donation_date")),
        donation_amount=parse_numeric(row.get("donation_amount")),
        volunteer_id=parse_int(row.get("volunteer_id")),
    )


# ---------------------------------------------------------------------------
# Lazy CSV source
# ---------------------------------------------------------------------------

class CsvRowSource:
    """Stream rows from donation CSV files, one file after another.

    Each iteration reopens the files from the start, so the source can be
    consumed more than once.
    """

    def __init__(self, paths: Sequence[Path | str]) -> None:
        self.paths = [Path(p) for p in paths]

    def validate_headers(self) -> None:
        """Open each file just far enough to check its header row."""
        for path in self.paths:
            with path.open(encoding="utf-8-sig", newline="") as fh:
                reader = csv.DictReader(fh)
                header_set = {k.strip() for k in (reader.fieldnames or [])}
            missing = REQUIRED_HEADERS - header_set
            if missing:
                raise SourceFormatError(
                    f"{path.name} missing required headers: {sorted(missing)}"
                )

    def __iter__(self) -> Iterator[dict[str, str]]:
        for path in self.paths:
            log.info("Reading donations from %s", path)
            with path.open(encoding="utf-8-sig", newline="") as fh:
                yield from csv.DictReader(fh)


# ---------------------------------------------------------------------------
# Per-row processing
# ---------------------------------------------------------------------------

def _reject(
    ctx: RunContext,
    router: RejectionRouter,
    raw: Mapping[str, Any],
    donation: Donation,
    reason: str,
    detail: str,
) -> None:
    target = router.route(raw, donation.volunteer_id)
    ctx.counters.rows_rejected += 1
    ctx.counters.reject_reasons[reason] += 1
    log.warning(
        "Rejected donation %s (%s: %s) → bucket %s",
        donation.donation_id, reason, detail, target,
    )


def _process_row(
    ctx: RunContext,
    pipeline: ValidationPipeline,
    router: RejectionRouter,
    raw: Mapping[str, Any],
) -> bool:
    """Validate and insert one row.  Returns True when the donation was written."""
    donation = parse_donation(raw)
    surplus = raw.get(None)
    if surplus:
        _reject(
            ctx, router, raw, donation,
            FailureReason.INCOMPLETE_RECORD.value,
            f"{len(surplus)} value(s) beyond the header row",
        )
        return False
    try:
        outcome = pipeline.validate(donation)
        if not outcome.ok:
            failure = outcome.failure
            _reject(ctx, router, raw, donation, failure.reason.value, failure.detail)
            return False
        ctx.target.insert_donation(donation)
    except StoreConnectionError:
        raise
    except WriteError as exc:
        _reject(ctx, router, raw, donation, "WriteError", str(exc))
        return False
    except StoreError as exc:
        _reject(ctx, router, raw, donation, "StoreError", str(exc))
        return False
    ctx.counters.donations_inserted += 1
    log.debug("Inserted donation %s", donation.donation_id)
    return True


def _flush_after_failure(
    ctx: RunContext,
    router: RejectionRouter,
    sink: RejectionSink,
) -> None:
    """Flush whatever was collected before a fatal error.

    A write failure here is logged, never raised, so the fatal error that
    ended the run is the one that propagates.
    """
    try:
        ctx.counters.reject_files_written += router.flush(sink)
    except OSError as exc:
        log.error("Could not write rejection files after fatal error: %s", exc)
        ctx.counters.warnings.append(f"[{ctx.run_id}] rejection flush failed: {exc}")


# ---------------------------------------------------------------------------
# Main run entry point
# ---------------------------------------------------------------------------

def run_donations(
    ctx: RunContext,
    rows: Iterable[Mapping[str, Any]],
    sink: RejectionSink,
    pipeline: ValidationPipeline | None = None,
) -> RejectionRouter:
    """Process every row, commit once, then flush rejection buckets.

    Buckets collected before a fatal error are still flushed.
    """
    run_id = ctx.run_id
    counters = ctx.counters
    pipeline = pipeline or donation_pipeline(ctx.target)
    router = RejectionRouter(ctx.target)

    click.echo(f"[{run_id}] Starting donation load")
    try:
        for raw in rows:
            counters.rows_read += 1
            _process_row(ctx, pipeline, router, raw)

        if ctx.dry_run:
            ctx.target.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            ctx.target.commit()
    except Exception:
        try:
            ctx.target.rollback()
        except CanvassEtlError as exc:
            log.error("Rollback after fatal error failed: %s", exc)
        _flush_after_failure(ctx, router, sink)
        raise

    counters.reject_files_written += router.flush(sink)

    click.echo(
        f"[{run_id}] Done: {counters.rows_read} rows read, "
        f"{counters.donations_inserted} donations inserted, "
        f"{counters.rows_rejected} rejected into "
        f"{counters.reject_files_written} file(s)"
    )
    return router
