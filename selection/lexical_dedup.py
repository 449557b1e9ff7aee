"""Lexical deduplication: collapse rows sharing a normalized title or URL."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

from core import CandidateItem
from selection.normalize import TITLE_KEY_PREFIX, normalize_title_key, normalize_url_key


logger = logging.getLogger(__name__)

RankKey = Callable[[CandidateItem], Tuple[Any, ...]]


def richest_then_newest(item: CandidateItem) -> Tuple[Any, ...]:
    """Greatest content wins; ties go to the most recent ingestion, then the larger id."""
    return (item.content_length, item.created_at, item.id)


def newest_first(item: CandidateItem) -> Tuple[Any, ...]:
    return (item.created_at, item.id)


def pick_representative(members: Sequence[CandidateItem], rank_key: RankKey = richest_then_newest) -> CandidateItem:
    if not members:
        raise ValueError("cannot pick a representative from an empty group")
    return max(members, key=rank_key)


@dataclass(frozen=True)
class LexicalDedupResult:
    items: List[CandidateItem]
    removed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def _collapse(
    items: Iterable[CandidateItem],
    key_fn: Callable[[CandidateItem], str],
    rank_key: RankKey,
) -> Tuple[List[CandidateItem], List[Tuple[str, str]]]:
    groups: Dict[str, List[CandidateItem]] = {}
    for item in items:
        key = key_fn(item) or f"id:{item.id}"
        groups.setdefault(key, []).append(item)

    kept: List[CandidateItem] = []
    removed: List[Tuple[str, str]] = []
    for members in groups.values():
        keeper = pick_representative(members, rank_key)
        kept.append(keeper)
        removed.extend((member.id, keeper.id) for member in members if member.id != keeper.id)
    return kept, removed


def dedup_lexical(
    items: Sequence[CandidateItem],
    *,
    rank_key: RankKey = richest_then_newest,
    prefix: int = TITLE_KEY_PREFIX,
) -> LexicalDedupResult:
    """
    Keep one representative per normalized-title group, then per URL group.

    The result does not depend on input order: grouping is by key, the
    representative is the maximum under ``rank_key``, and output is sorted
    newest first with id as the final tie-break. ``removed`` holds
    ``(dropped_id, kept_id)`` pairs.
    """
    unique_by_id: Dict[str, CandidateItem] = {}
    for item in items:
        current = unique_by_id.get(item.id)
        if current is None or rank_key(item) > rank_key(current):
            unique_by_id[item.id] = item

    by_title, removed_title = _collapse(
        unique_by_id.values(),
        lambda item: normalize_title_key(item.title, prefix),
        rank_key,
    )
    by_url, removed_url = _collapse(by_title, lambda item: normalize_url_key(item.url), rank_key)

    ordered = sorted(by_url, key=newest_first, reverse=True)
    removed = sorted(removed_title + removed_url)
    if removed:
        logger.info(
            "lexical_dedup input=%s kept=%s title_dupes=%s url_dupes=%s",
            len(items),
            len(ordered),
            len(removed_title),
            len(removed_url),
        )
    return LexicalDedupResult(items=ordered, removed=removed)
