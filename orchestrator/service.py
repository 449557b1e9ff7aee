"""Orchestrator service layer for scheduled and on-demand selection cycles."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging
from threading import Lock
from typing import Any, Dict, List, Optional

from core import CycleResult
from selection.engine import EngineConfig, SelectionEngine, new_session_id
from selection.tiers import tier_summary
from utils.exceptions import CycleInProgressError, NoCandidatesError
from .store import CycleHistoryStore, CycleStatus


logger = logging.getLogger(__name__)

CLEANUP_RESET_LIMIT = 50
CLEANUP_REASON = "cleanup_stuck_selections_cron"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SelectionOrchestrator:
    """Runs at most one selection cycle at a time and keeps their history."""

    def __init__(
        self,
        engine: SelectionEngine,
        *,
        config: Optional[EngineConfig] = None,
        history: Optional[CycleHistoryStore] = None,
    ) -> None:
        self._engine = engine
        self._config = config or EngineConfig()
        self._history = history or CycleHistoryStore()
        self._guard = Lock()
        self._current: Optional[str] = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def history(self) -> CycleHistoryStore:
        return self._history

    @property
    def current_cycle(self) -> Optional[str]:
        return self._current

    def is_running(self) -> bool:
        return self._guard.locked()

    async def run_cycle(
        self,
        count: int = 3,
        *,
        config: Optional[EngineConfig] = None,
        stop_event: Optional[asyncio.Event] = None,
        trigger: str = "manual",
        now: Optional[datetime] = None,
    ) -> CycleResult:
        """
        Run one cycle under the single-flight guard.

        Raises ``CycleInProgressError`` immediately when another cycle holds the
        guard. A cycle without candidates is recorded as "no_candidates" and
        returned as a structured result.
        """
        if not self._guard.acquire(blocking=False):
            raise CycleInProgressError(cycle_id=self._current)

        cycle_id = new_session_id(now)
        self._current = cycle_id
        try:
            self._history.create(cycle_id, requested_count=count, trigger=trigger)
            self._history.update_running(cycle_id)
            self._history.append_event(cycle_id, "started", f"count={count} trigger={trigger}")
            try:
                result = await self._engine.run_cycle(
                    count,
                    config or self._config,
                    now=now,
                    stop_event=stop_event,
                    session_id=cycle_id,
                )
            except NoCandidatesError as exc:
                logger.warning("cycle_no_candidates cycle=%s details=%s", cycle_id, exc.details)
                result = CycleResult(
                    session_id=cycle_id,
                    status="no_candidates",
                    degradations=[exc.message],
                    finished_at=_utcnow(),
                )
            except Exception as exc:
                logger.exception("cycle_failed cycle=%s", cycle_id)
                self._history.update_failed(cycle_id, str(exc))
                self._history.append_event(cycle_id, "failed", str(exc))
                raise

            self._history.update_finished(cycle_id, result)
            self._history.append_event(
                cycle_id,
                result.status,
                f"method={result.method} committed={result.counts.committed} degradations={len(result.degradations)}",
            )
            return result
        finally:
            self._current = None
            self._guard.release()

    def get_cycle_status(self, cycle_id: str) -> Optional[CycleStatus]:
        return self._history.get_status(cycle_id)

    def list_cycles(self, limit: int = 20) -> List[CycleStatus]:
        return self._history.list_statuses(limit)

    def list_events(self, cycle_id: str) -> List[Dict[str, str]]:
        return self._history.list_events(cycle_id)

    async def cleanup_stale_selections(
        self,
        hours: Optional[float] = None,
        *,
        limit: int = CLEANUP_RESET_LIMIT,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Release rows selected more than ``hours`` ago that never got enhanced."""
        now = now or _utcnow()
        hours = float(hours if hours is not None else self._config.staleness_hours)
        cutoff = now - timedelta(hours=hours)
        reset_ids = await self._engine.store.reset_stale_selections(
            cutoff,
            sources=None,
            limit=limit,
            reason=CLEANUP_REASON,
        )
        logger.info("cleanup_stale hours=%s reset=%s", hours, len(reset_ids))
        return {
            "reset_count": len(reset_ids),
            "reset_ids": list(reset_ids),
            "cutoff": cutoff.isoformat(),
            "reason": CLEANUP_REASON,
        }

    async def statistics(self, hours: float = 24, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or _utcnow()
        since = now - timedelta(hours=hours)
        stats = await self._engine.store.selection_statistics(since, sources=self._config.tiers.all_sources())
        latest = self._history.latest()
        return {
            **stats,
            "window_hours": hours,
            "tiers": tier_summary(self._config.tiers),
            "running": self.is_running(),
            "last_cycle": latest.model_dump(mode="json", exclude={"result"}) if latest else None,
        }

    async def aclose(self) -> None:
        await self._engine.aclose()
