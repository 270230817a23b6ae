"""canvass_etl.shared

Shared pieces used by both the address_refresh and donations modes:
the error taxonomy, RunCounters, and report-writing support.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CanvassEtlError(Exception):
    """Base class for every error raised by canvass_etl."""


class MissingConfigurationError(CanvassEtlError):
    """Raised when a required setting is absent or blank."""


class SourceFormatError(CanvassEtlError):
    """An input file is missing required headers."""


class StoreError(CanvassEtlError):
    """A statement against the source or target store failed."""


class StoreConnectionError(StoreError):
    """The store connection could not be opened or was lost.  Fatal for the run."""


class WriteError(StoreError):
    """A single insert/update/commit was refused by the store."""


class AllocationError(CanvassEtlError):
    """The next surrogate id could not be computed.  Fatal for one insert only."""


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    # Common counters
    rows_read: int = 0
    rows_rejected: int = 0
    # address_refresh
    addresses_inserted: int = 0
    addresses_updated: int = 0
    addresses_unchanged: int = 0
    write_errors: int = 0
    checkpoints_committed: int = 0
    # donations
    donations_inserted: int = 0
    reject_files_written: int = 0
    reject_reasons: Counter = field(default_factory=Counter)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = {
            k: v for k, v in self.__dict__.items()
            if k not in ("warnings", "reject_reasons")
        }
        d["reject_reasons"] = dict(sorted(self.reject_reasons.items()))
        d["warnings"] = self.warnings[:50]
        return d


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    reports_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = reports_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
