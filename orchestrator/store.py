"""In-memory cycle history for orchestration status tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from core import CycleResult


CycleStatusState = Literal["queued", "running", "completed", "failed", "no_candidates", "cancelled"]
TERMINAL_STATES = {"completed", "failed", "no_candidates", "cancelled"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleTimestamps(BaseModel):
    created_at: datetime = Field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class CycleStatus(BaseModel):
    cycle_id: str
    state: CycleStatusState = "queued"
    requested_count: int = 3
    trigger: str = "manual"
    timestamps: CycleTimestamps = Field(default_factory=CycleTimestamps)
    errors: List[str] = Field(default_factory=list)
    result: Optional[CycleResult] = None


class CycleHistoryStore:
    """Thread-safe store for cycle statuses and their event trail."""

    def __init__(self, max_cycles: int = 200) -> None:
        self._statuses: Dict[str, CycleStatus] = {}
        self._events: Dict[str, List[Dict[str, str]]] = {}
        self._order: List[str] = []
        self._max_cycles = max(1, int(max_cycles))
        self._lock = Lock()

    def create(self, cycle_id: str, *, requested_count: int, trigger: str = "manual") -> CycleStatus:
        with self._lock:
            status = CycleStatus(cycle_id=cycle_id, requested_count=requested_count, trigger=trigger)
            self._statuses[cycle_id] = status
            self._events[cycle_id] = []
            self._order.append(cycle_id)
            while len(self._order) > self._max_cycles:
                evicted = self._order.pop(0)
                self._statuses.pop(evicted, None)
                self._events.pop(evicted, None)
            return status.model_copy(deep=True)

    def get_status(self, cycle_id: str) -> Optional[CycleStatus]:
        with self._lock:
            status = self._statuses.get(cycle_id)
            return status.model_copy(deep=True) if status else None

    def latest(self) -> Optional[CycleStatus]:
        with self._lock:
            if not self._order:
                return None
            return self._statuses[self._order[-1]].model_copy(deep=True)

    def list_statuses(self, limit: int = 20) -> List[CycleStatus]:
        with self._lock:
            ids = list(reversed(self._order))[: max(0, int(limit))]
            return [self._statuses[cycle_id].model_copy(deep=True) for cycle_id in ids]

    def update_running(self, cycle_id: str) -> Optional[CycleStatus]:
        with self._lock:
            status = self._statuses.get(cycle_id)
            if not status:
                return None
            now = _utcnow()
            status.state = "running"
            status.timestamps.started_at = status.timestamps.started_at or now
            status.timestamps.updated_at = now
            return status.model_copy(deep=True)

    def update_finished(self, cycle_id: str, result: CycleResult) -> Optional[CycleStatus]:
        """Record a structured result; the state follows ``result.status``."""
        with self._lock:
            status = self._statuses.get(cycle_id)
            if not status:
                return None
            now = _utcnow()
            status.state = result.status
            status.result = result.model_copy(deep=True)
            status.timestamps.completed_at = now
            status.timestamps.updated_at = now
            return status.model_copy(deep=True)

    def update_failed(self, cycle_id: str, error: str) -> Optional[CycleStatus]:
        with self._lock:
            status = self._statuses.get(cycle_id)
            if not status:
                return None
            now = _utcnow()
            status.state = "failed"
            if error:
                status.errors.append(str(error))
            status.timestamps.completed_at = now
            status.timestamps.updated_at = now
            return status.model_copy(deep=True)

    def append_event(self, cycle_id: str, event: str, message: str) -> bool:
        with self._lock:
            if cycle_id not in self._statuses:
                return False
            self._events.setdefault(cycle_id, []).append(
                {
                    "ts": _utcnow().isoformat(timespec="seconds"),
                    "event": str(event or "").strip() or "event",
                    "message": str(message or "").strip(),
                }
            )
            return True

    def list_events(self, cycle_id: str) -> List[Dict[str, str]]:
        with self._lock:
            return [dict(item) for item in list(self._events.get(cycle_id, []))]
