"""Deterministic recency-based selection used whenever the ranking oracle cannot be trusted."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Sequence, Tuple

from core import SelectedArticle, ShortlistEntry


logger = logging.getLogger(__name__)

FALLBACK_REASON = "Fallback selection - most recent article"
FALLBACK_SCORE = 75.0


def newest_entry(entry: ShortlistEntry) -> Tuple[Any, ...]:
    """Most recent ingestion first; earlier shortlist position breaks ties."""
    return (entry.item.created_at, -entry.index)


def fallback_select(
    shortlist: Sequence[ShortlistEntry],
    count: int,
    session_id: str,
    *,
    detail: str = "ranking oracle unavailable",
    recency_key: Callable[[ShortlistEntry], Tuple[Any, ...]] = newest_entry,
) -> List[SelectedArticle]:
    """Pick ``min(count, len(shortlist))`` most recent entries with the fixed fallback score."""
    take = max(0, min(int(count), len(shortlist)))
    chosen = sorted(shortlist, key=recency_key, reverse=True)[:take]
    logger.info("fallback_select session=%s shortlist=%s picked=%s detail=%s", session_id, len(shortlist), len(chosen), detail)
    return [
        SelectedArticle(
            item=entry.item,
            selection_reason=f"{FALLBACK_REASON} ({detail})",
            priority_score=FALLBACK_SCORE,
            session_id=session_id,
            method="fallback",
            shortlist_id=entry.shortlist_id,
        )
        for entry in chosen
    ]
