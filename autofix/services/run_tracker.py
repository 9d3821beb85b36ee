"""
Run Tracker
===========
Process-scoped store of recent remediation runs, injected into the
orchestrator and read by the API.

Stores:
    identifier → RunRecord(started_at, updated_at, status, url, error)

Eviction:
    - Age-based sweep: records older than max_age_seconds (by updated_at)
      are dropped on every start() and on demand via sweep()
    - Hard cap on tracked records; the oldest are dropped first

It is an observability aid only: it does not deduplicate runs (the
Duplicate Guard does that on the host).
"""
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from autofix.core.config import RUN_TRACKER_MAX_AGE_SECONDS
from autofix.core.constants import STATUS_ANALYZING, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

_MAX_TRACKED = 500


@dataclass
class RunRecord:
    identifier: str
    kind: str
    started_at: float
    updated_at: float
    status: str = STATUS_ANALYZING
    url: str = ""
    error: str = ""

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["finished"] = self.finished
        data["elapsed_seconds"] = round(self.updated_at - self.started_at, 2)
        return data


class RunTracker:
    """
    In-memory, age-evicted run registry.

    Usage:
        tracker = RunTracker()
        tracker.start("hash123", "error")
        tracker.update("hash123", "pr_created", url="https://...")
    """

    def __init__(self, max_age_seconds: float = RUN_TRACKER_MAX_AGE_SECONDS, max_tracked: int = _MAX_TRACKED) -> None:
        self.max_age_seconds = max_age_seconds
        self.max_tracked = max_tracked
        self._records: "OrderedDict[str, RunRecord]" = OrderedDict()

    def start(self, identifier: str, kind: str) -> RunRecord:
        self.sweep()
        now = time.time()
        existing = self._records.get(identifier)
        if existing is not None and not existing.finished:
            logger.warning("Run for %s started while another is still in flight", identifier)
        record = RunRecord(identifier=identifier, kind=kind, started_at=now, updated_at=now)
        self._records.pop(identifier, None)
        self._records[identifier] = record
        while len(self._records) > self.max_tracked:
            evicted, _ = self._records.popitem(last=False)
            logger.debug("Run tracker cap reached, evicted %s", evicted)
        return record

    def update(self, identifier: str, status: str, url: str = "", error: str = "") -> Optional[RunRecord]:
        record = self._records.get(identifier)
        if record is None:
            return None
        record.status = status
        record.updated_at = time.time()
        if url:
            record.url = url
        if error:
            record.error = error
        return record

    def get(self, identifier: str) -> Optional[RunRecord]:
        return self._records.get(identifier)

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop records not updated within max_age_seconds. Returns how many were dropped."""
        now = time.time() if now is None else now
        expired = [k for k, r in self._records.items() if now - r.updated_at > self.max_age_seconds]
        for key in expired:
            del self._records[key]
        if expired:
            logger.debug("Run tracker swept %d expired record(s)", len(expired))
        return len(expired)

    @property
    def active_count(self) -> int:
        return sum(1 for r in self._records.values() if not r.finished)

    def __len__(self) -> int:
        return len(self._records)
