"""canvass_etl.context

RunContext: everything one run needs, built once and passed explicitly.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from canvass_etl.config import EtlSettings
from canvass_etl.shared import RunCounters
from canvass_etl.store import TargetStore


@dataclass
class RunContext:
    settings: EtlSettings
    target: TargetStore
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    dry_run: bool = False
    counters: RunCounters = field(default_factory=RunCounters)
    started_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
