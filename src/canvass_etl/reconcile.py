"""canvass_etl.reconcile

Key-based reconciliation of incoming addresses against a snapshot of the
target store, and surrogate id allocation for the inserts it produces.

Matching semantics:
  - The snapshot is indexed once per run by natural key.  When two existing
    rows share a key the last one seen wins.
  - Every incoming record is classified exactly once:
      key absent                      → Insert
      key present, any field differs  → Update (full field set, matched id)
      key present, nothing differs    → no write, nothing emitted
  - Incoming records are not deduplicated against each other: two incoming
    rows with the same key are both matched against the same snapshot row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Union

from canvass_etl.records import ADDRESS_TABLE, AddressRecord
from canvass_etl.shared import AllocationError, CanvassEtlError, StoreConnectionError
from canvass_etl.store import TargetStore

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Match results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Insert:
    record: AddressRecord
    position: int = 0

    action = "insert"


@dataclass(frozen=True)
class Update:
    target_id: int
    fields: dict[str, Any]
    position: int = 0

    action = "update"


MatchResult = Union[Insert, Update]


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------

def build_index(existing: Iterable[AddressRecord]) -> dict[str, AddressRecord]:
    """Hash the target snapshot by natural key; collisions keep the last row."""
    index: dict[str, AddressRecord] = {}
    collisions = 0
    for record in existing:
        key = record.key
        if key in index:
            collisions += 1
        index[key] = record
    if collisions:
        log.warning("%d existing rows share a natural key with an earlier row", collisions)
    return index


def changed_fields(existing: AddressRecord, incoming: AddressRecord) -> list[str]:
    """Names of the stored columns whose values differ between the two records."""
    old = existing.field_values()
    new = incoming.field_values()
    return [name for name, value in new.items() if old[name] != value]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def reconcile(
    existing_index: dict[str, AddressRecord],
    incoming: Sequence[AddressRecord],
) -> list[MatchResult]:
    """Classify each incoming record as Insert, Update, or (silently) no-op.

    Results keep input order; ``position`` is the index of the originating
    record in ``incoming``.
    """
    results: list[MatchResult] = []
    for position, record in enumerate(incoming):
        key = record.key
        match = existing_index.get(key)
        if match is None:
            log.debug("Insert: %s", key)
            results.append(Insert(record=record, position=position))
            continue
        diff = changed_fields(match, record)
        if not diff:
            log.debug("Unchanged: %s (address_id=%s)", key, match.address_id)
            continue
        log.debug("Update: %s (address_id=%s) changed=%s", key, match.address_id, diff)
        results.append(
            Update(
                target_id=match.address_id,  # type: ignore[arg-type]
                fields=record.field_values(),
                position=position,
            )
        )
    return results


# ---------------------------------------------------------------------------
# Surrogate ids
# ---------------------------------------------------------------------------

class SurrogateIdAllocator:
    """Next free surrogate id, re-read from the store on every call.

    Assumes this run is the only writer of ``table`` while it runs.
    """

    def __init__(
        self,
        store: TargetStore,
        field: str = "address_id",
        table: str = ADDRESS_TABLE,
    ) -> None:
        self._store = store
        self._field = field
        self._table = table

    def next_id(self) -> int:
        try:
            current = self._store.fetch_max(self._field, self._table)
        except StoreConnectionError:
            raise
        except CanvassEtlError as exc:
            raise AllocationError(
                f"cannot read MAX({self._field}) from {self._table}: {exc}"
            ) from exc
        return (current or 0) + 1
