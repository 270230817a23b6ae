"""canvass_etl.rejections

Per-owner rejection buckets for donation rows that fail validation or
cannot be written.

Routing: the owner's group leader, or the owner itself when no leader is
assigned (or the owner is unknown to the store).  Rows with no parseable
owner key go to the ``unassigned`` bucket.  Buckets live in memory for the
whole run and are flushed once, one artifact per routing target.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from canvass_etl.shared import StoreConnectionError, StoreError
from canvass_etl.store import TargetStore

log = logging.getLogger(__name__)

UNASSIGNED = "unassigned"


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------

class RejectionSink(Protocol):
    def write_bucket(self, owner_id: str, raw_records: list[dict[str, Any]]) -> None:
        """Materialize one owner's rejected rows."""
        ...


class CsvRejectionSink:
    """Write rejected_<owner>.csv files: no header, one row per line, source field order."""

    def __init__(self, directory: Path, delimiter: str = ",") -> None:
        self._directory = directory
        self._delimiter = delimiter
        self.paths: list[Path] = []

    def path_for(self, owner_id: str) -> Path:
        return self._directory / f"rejected_{owner_id}.csv"

    def write_bucket(self, owner_id: str, raw_records: list[dict[str, Any]]) -> None:
        path = self.path_for(owner_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh, delimiter=self._delimiter, lineterminator="\n")
            for record in raw_records:
                writer.writerow(_line_values(record))
        self.paths.append(path)


def _line_values(record: dict[str, Any]) -> list[Any]:
    """Field values in source order; surplus values (a list under None) go last."""
    values: list[Any] = []
    for key, value in record.items():
        if key is None and isinstance(value, list):
            values.extend(value)
        else:
            values.append(value)
    return values


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RejectionRouter:
    def __init__(self, store: TargetStore) -> None:
        self._store = store
        self._buckets: dict[str, list[dict[str, Any]]] = {}

    def routing_target(self, owner_key: int | None) -> str:
        if owner_key is None:
            return UNASSIGNED
        try:
            return str(self._store.resolve_owner_chain(owner_key))
        except StoreConnectionError:
            raise
        except StoreError as exc:
            log.warning(
                "Group leader lookup failed for volunteer %s (%s); routing to volunteer",
                owner_key, exc,
            )
            return str(owner_key)

    def route(self, raw_record: Mapping[str, Any], owner_key: int | None) -> str:
        """Append the untouched ``raw_record`` to its routing target's bucket."""
        target = self.routing_target(owner_key)
        self._buckets.setdefault(target, []).append(dict(raw_record))
        return target

    @property
    def buckets(self) -> dict[str, list[dict[str, Any]]]:
        return {owner: list(records) for owner, records in self._buckets.items()}

    def __len__(self) -> int:
        return sum(len(records) for records in self._buckets.values())

    def flush(self, sink: RejectionSink) -> int:
        """Write every bucket to ``sink`` and empty them.  Returns buckets written."""
        written = 0
        for owner, records in self._buckets.items():
            sink.write_bucket(owner, records)
            log.info("Wrote %d rejected rows for owner %s", len(records), owner)
            written += 1
        self._buckets.clear()
        return written
