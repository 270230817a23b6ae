"""canvass_etl.config

Environment-style run configuration.

Recognised variables:
  SOURCE_DB_DSN   — source-of-record PostgreSQL DSN (address_refresh only)
  TARGET_DB_DSN   — target store PostgreSQL DSN (required)
  BATCH_SIZE      — writes per batch (default 1000)
  COMMIT_EVERY    — batches between checkpoint commits (default 10)
  REJECTS_DIR     — directory for rejected_<owner>.csv files
  REPORTS_DIR     — directory for JSON run reports
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from canvass_etl.shared import MissingConfigurationError

DEFAULT_BATCH_SIZE = 1000
DEFAULT_COMMIT_EVERY = 10


@dataclass(frozen=True)
class EtlSettings:
    target_dsn: str
    source_dsn: str | None = None
    batch_size: int = DEFAULT_BATCH_SIZE
    commit_every: int = DEFAULT_COMMIT_EVERY
    rejects_dir: Path = Path("./artifacts/rejects")
    reports_dir: Path = Path("./artifacts/reports")

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise MissingConfigurationError(
                f"BATCH_SIZE must be a positive integer, got {self.batch_size}"
            )
        if self.commit_every < 1:
            raise MissingConfigurationError(
                f"COMMIT_EVERY must be a positive integer, got {self.commit_every}"
            )


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise MissingConfigurationError(
            f"{name} must be an integer, got {raw!r}"
        ) from None


def load_settings(
    environ: Mapping[str, str] | None = None,
    require_source: bool = False,
) -> EtlSettings:
    """Build EtlSettings from ``environ`` (defaults to os.environ).

    Raises MissingConfigurationError when TARGET_DB_DSN is blank, or when
    ``require_source`` is set and SOURCE_DB_DSN is blank.
    """
    env = os.environ if environ is None else environ

    missing = []
    target_dsn = (env.get("TARGET_DB_DSN") or "").strip()
    if not target_dsn:
        missing.append("TARGET_DB_DSN")
    source_dsn = (env.get("SOURCE_DB_DSN") or "").strip() or None
    if require_source and source_dsn is None:
        missing.append("SOURCE_DB_DSN")
    if missing:
        raise MissingConfigurationError(
            f"Missing configuration for: {', '.join(sorted(missing))}"
        )

    kwargs = {}
    if (env.get("REJECTS_DIR") or "").strip():
        kwargs["rejects_dir"] = Path(env["REJECTS_DIR"].strip())
    if (env.get("REPORTS_DIR") or "").strip():
        kwargs["reports_dir"] = Path(env["REPORTS_DIR"].strip())

    return EtlSettings(
        target_dsn=target_dsn,
        source_dsn=source_dsn,
        batch_size=_positive_int(env, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
        commit_every=_positive_int(env, "COMMIT_EVERY", DEFAULT_COMMIT_EVERY),
        **kwargs,
    )
