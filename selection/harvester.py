"""Candidate harvester: stale-selection reset, per-tier fetch under quota, per-tier filters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core import CandidateItem, TierConfig, TierTable
from selection.normalize import looks_like_test_title, normalize_title_key
from storage.article_store import ArticleStore
from utils.exceptions import NoCandidatesError, StorageError


logger = logging.getLogger(__name__)

STORE_READ_ATTEMPTS = 3
STALE_RESET_LIMIT = 20
RECENT_TITLE_LIMIT = 100


def default_retry_wait():
    return wait_exponential(multiplier=1, min=1, max=10)


@dataclass
class TierHarvest:
    tier: str
    fetched: int = 0
    kept: int = 0
    reset: int = 0
    rejected: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def reject(self, reason: str) -> None:
        self.rejected[reason] = self.rejected.get(reason, 0) + 1


@dataclass
class HarvestResult:
    items: List[CandidateItem]
    tiers: List[TierHarvest]
    reset_ids: List[str] = field(default_factory=list)

    def count_by_tier(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.items:
            counts[item.tier or "unknown"] = counts.get(item.tier or "unknown", 0) + 1
        return counts


async def _read_with_retry(call: Callable[[], Awaitable[Any]], wait) -> Any:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(STORE_READ_ATTEMPTS),
        wait=wait,
        retry=retry_if_exception_type(StorageError),
        reraise=True,
    ):
        with attempt:
            return await call()
    return None


def _tier_filter(
    items: List[CandidateItem],
    tier: TierConfig,
    recent_titles: Set[str],
    stats: TierHarvest,
) -> List[CandidateItem]:
    kept: List[CandidateItem] = []
    for item in items:
        if item.content_length < tier.min_content_chars:
            stats.reject("short_content")
            logger.debug("harvest_reject tier=%s id=%s reason=short_content chars=%s", tier.name, item.id, item.content_length)
            continue
        if looks_like_test_title(item.title):
            stats.reject("test_title")
            logger.debug("harvest_reject tier=%s id=%s reason=test_title", tier.name, item.id)
            continue
        if normalize_title_key(item.title) in recent_titles:
            stats.reject("recently_selected")
            logger.debug("harvest_reject tier=%s id=%s reason=recently_selected", tier.name, item.id)
            continue
        kept.append(item.model_copy(update={"tier": tier.name, "tier_weight": float(tier.weight)}))
    return kept[: tier.quota]


async def reset_stale_for_tier(
    store: ArticleStore,
    tier: TierConfig,
    *,
    now: datetime,
    staleness_hours: float,
    wait=None,
) -> List[str]:
    cutoff = now - timedelta(hours=staleness_hours)
    try:
        reset = await _read_with_retry(
            lambda: store.reset_stale_selections(
                cutoff,
                sources=sorted(tier.sources),
                limit=STALE_RESET_LIMIT,
                reason="stale_selection_reset",
            ),
            wait or default_retry_wait(),
        )
    except StorageError as exc:
        logger.warning("stale_reset_failed tier=%s error=%s", tier.name, exc)
        return []
    if reset:
        logger.info("stale_reset tier=%s count=%s", tier.name, len(reset))
    return list(reset or [])


async def harvest(
    store: ArticleStore,
    tiers: TierTable,
    *,
    now: Optional[datetime] = None,
    staleness_hours: float = 4,
    recent_title_hours: float = 24,
    retry_wait=None,
) -> HarvestResult:
    """
    Collect this cycle's candidates from every tier.

    Stale selections are reset first (one task per tier), then recently
    selected titles and every tier's candidates are read concurrently.
    Raises ``NoCandidatesError`` when no tier yields anything.
    """
    now = now or datetime.now(timezone.utc)
    wait = retry_wait or default_retry_wait()

    reset_lists = await asyncio.gather(
        *(reset_stale_for_tier(store, tier, now=now, staleness_hours=staleness_hours, wait=wait) for tier in tiers.tiers)
    )

    async def _recent_titles() -> Set[str]:
        since = now - timedelta(hours=recent_title_hours)
        try:
            titles = await _read_with_retry(
                lambda: store.fetch_recent_selected_titles(since, RECENT_TITLE_LIMIT),
                wait,
            )
        except StorageError as exc:
            logger.warning("recent_titles_failed error=%s", exc)
            return set()
        return {normalize_title_key(title) for title in titles or [] if title}

    async def _fetch(tier: TierConfig) -> List[CandidateItem]:
        since = now - timedelta(hours=tier.max_age_hours)
        return list(
            await _read_with_retry(
                lambda: store.fetch_candidates(sorted(tier.sources), since, tier.quota),
                wait,
            )
            or []
        )

    gathered = await asyncio.gather(
        _recent_titles(),
        *(_fetch(tier) for tier in tiers.tiers),
        return_exceptions=True,
    )
    recent_titles = gathered[0] if isinstance(gathered[0], set) else set()

    items: List[CandidateItem] = []
    stats: List[TierHarvest] = []
    for tier, fetched, reset in zip(tiers.tiers, gathered[1:], reset_lists):
        tier_stats = TierHarvest(tier=tier.name, reset=len(reset))
        stats.append(tier_stats)
        if isinstance(fetched, BaseException):
            tier_stats.error = str(fetched)
            logger.warning("harvest_tier_failed tier=%s error=%s", tier.name, fetched)
            continue
        tier_stats.fetched = len(fetched)
        kept = _tier_filter(fetched, tier, recent_titles, tier_stats)
        tier_stats.kept = len(kept)
        items.extend(kept)
        logger.info(
            "harvest_tier tier=%s fetched=%s kept=%s quota=%s rejected=%s",
            tier.name,
            tier_stats.fetched,
            tier_stats.kept,
            tier.quota,
            tier_stats.rejected,
        )

    reset_ids = sorted({item_id for ids in reset_lists for item_id in ids})
    if not items:
        raise NoCandidatesError(
            tiers={row.tier: {"fetched": row.fetched, "error": row.error} for row in stats},
        )
    return HarvestResult(items=items, tiers=stats, reset_ids=reset_ids)
