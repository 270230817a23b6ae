"""canvass_etl.batching

Batched writes of reconciliation results with checkpoint commits.

Commit cadence:
  - results are split into consecutive groups of ``batch_size``, input order kept
  - every write in a group is attempted on its own; a refused write becomes an
    errored WriteOutcome and the group carries on
  - a checkpoint commit follows every ``commit_every``-th group, and one final
    commit follows the last group (a checkpoint that would land on the last
    group is folded into the final commit)
  - StoreConnectionError, or a failed commit, is fatal: the open transaction is
    rolled back and the error propagates.  Earlier checkpoints stay committed.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from canvass_etl.reconcile import Insert, MatchResult, SurrogateIdAllocator
from canvass_etl.shared import CanvassEtlError, StoreConnectionError
from canvass_etl.store import TargetStore

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WriteOutcome:
    """Result of one attempted write."""

    position: int
    action: str
    ok: bool
    target_id: int | None = None
    error: str | None = None


@dataclass
class BatchOutcome:
    number: int
    outcomes: list[WriteOutcome] = field(default_factory=list)

    def count(self, action: str) -> int:
        return sum(1 for o in self.outcomes if o.ok and o.action == action)

    @property
    def errored(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


@dataclass
class CommitSummary:
    inserted: int = 0
    updated: int = 0
    errored: int = 0
    batches: list[BatchOutcome] = field(default_factory=list)
    checkpoints: list[int] = field(default_factory=list)
    rolled_back: bool = False

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.errored

    def add(self, batch: BatchOutcome) -> None:
        self.batches.append(batch)
        self.inserted += batch.count("insert")
        self.updated += batch.count("update")
        self.errored += batch.errored

    def errors(self) -> list[WriteOutcome]:
        return [o for b in self.batches for o in b.outcomes if not o.ok]


def partition(results: Sequence[MatchResult], batch_size: int) -> list[Sequence[MatchResult]]:
    """Split ``results`` into consecutive groups of at most ``batch_size``."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [results[i:i + batch_size] for i in range(0, len(results), batch_size)]


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class BatchCommitController:
    def __init__(
        self,
        store: TargetStore,
        allocator: SurrogateIdAllocator,
        dry_run: bool = False,
    ) -> None:
        self._store = store
        self._allocator = allocator
        self._dry_run = dry_run

    def run(
        self,
        results: Sequence[MatchResult],
        batch_size: int,
        commit_every: int,
    ) -> CommitSummary:
        if commit_every < 1:
            raise ValueError(f"commit_every must be >= 1, got {commit_every}")
        groups = partition(results, batch_size)
        summary = CommitSummary()

        try:
            for number, group in enumerate(groups, start=1):
                log.info("Processing batch %d of %d", number, len(groups))
                batch = BatchOutcome(number=number)
                for result in group:
                    batch.outcomes.append(self._write(result))
                summary.add(batch)
                log.info(
                    "Batch processed. Total progress: Updated: %d, Inserted: %d, Errors: %d",
                    summary.updated, summary.inserted, summary.errored,
                )
                if (
                    not self._dry_run
                    and number % commit_every == 0
                    and number < len(groups)
                ):
                    self._checkpoint(number, summary)

            if self._dry_run:
                self._store.rollback()
                summary.rolled_back = True
                log.info("Dry run: all changes rolled back")
            else:
                self._checkpoint(len(groups), summary)
        except CanvassEtlError as exc:
            log.error("Fatal error during batch commit: %s", exc)
            self._abort()
            raise

        return summary

    def _write(self, result: MatchResult) -> WriteOutcome:
        target_id = None if isinstance(result, Insert) else result.target_id
        try:
            if isinstance(result, Insert):
                target_id = self._allocator.next_id()
                self._store.insert(result.record.with_id(target_id))
                log.debug("Inserted new address with ID: %s", target_id)
            else:
                self._store.update(result.target_id, result.fields)
                log.debug("Updated address with ID: %s", target_id)
        except StoreConnectionError:
            raise
        except Exception as exc:  # noqa: BLE001
            log.error(
                "Error processing %s at position %d: %s",
                result.action, result.position, exc,
            )
            return WriteOutcome(
                position=result.position,
                action=result.action,
                ok=False,
                target_id=target_id,
                error=f"{type(exc).__name__}: {exc}",
            )
        return WriteOutcome(
            position=result.position,
            action=result.action,
            ok=True,
            target_id=target_id,
        )

    def _checkpoint(self, number: int, summary: CommitSummary) -> None:
        self._store.commit()
        summary.checkpoints.append(number)
        log.info("Committed batch %d", number)

    def _abort(self) -> None:
        try:
            self._store.rollback()
        except CanvassEtlError as exc:
            log.error("Rollback after fatal error failed: %s", exc)
