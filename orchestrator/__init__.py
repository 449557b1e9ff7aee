"""Cycle orchestrator primitives for the selection engine."""

from .service import SelectionOrchestrator
from .store import CycleHistoryStore, CycleStatus

__all__ = [
    "CycleHistoryStore",
    "CycleStatus",
    "SelectionOrchestrator",
]
