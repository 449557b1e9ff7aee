"""Deterministic quality scoring: recency, content depth and source reputation."""

from __future__ import annotations

from datetime import datetime
from typing import List, Mapping, Sequence

from core import CandidateItem, ScoredCandidate
from selection.normalize import hours_since


SOURCE_REPUTATION = {
    "HKFP": 100,
    "scmp": 95,
    "TheStandard": 92,
    "bloomberg": 90,
    "RTHK": 85,
    "SingTao": 70,
    "on.cc": 65,
    "HK01": 60,
    "am730": 55,
    "bastillepost": 58,
}
DEFAULT_REPUTATION = 50

_QUALITY_WEIGHTS = {
    "recency": 0.3,
    "content": 0.4,
    "source": 0.3,
}

# (upper bound in hours, score)
_RECENCY_STEPS = ((1, 100), (3, 90), (6, 80), (12, 70), (24, 60))
# (minimum chars, score)
_CONTENT_STEPS = ((2000, 100), (1000, 90), (500, 80), (200, 70), (100, 60), (50, 50))


def recency_score(hours_old: float) -> int:
    for limit, score in _RECENCY_STEPS:
        if hours_old < limit:
            return score
    return 50


def content_score(content_length: int) -> int:
    for minimum, score in _CONTENT_STEPS:
        if content_length >= minimum:
            return score
    return 20


def source_score(source: str, reputation: Mapping[str, float] = SOURCE_REPUTATION) -> float:
    return float(reputation.get(source, DEFAULT_REPUTATION))


def quality_score(
    item: CandidateItem,
    now: datetime,
    reputation: Mapping[str, float] = SOURCE_REPUTATION,
) -> float:
    value = (
        _QUALITY_WEIGHTS["recency"] * recency_score(hours_since(item.created_at, now))
        + _QUALITY_WEIGHTS["content"] * content_score(item.content_length)
        + _QUALITY_WEIGHTS["source"] * source_score(item.source, reputation)
    )
    return round(max(0.0, min(100.0, value)), 2)


def score_candidates(
    items: Sequence[CandidateItem],
    now: datetime,
    reputation: Mapping[str, float] = SOURCE_REPUTATION,
) -> List[ScoredCandidate]:
    """Score every item; highest first, then newest, then id."""
    scored = [ScoredCandidate(item=item, quality_score=quality_score(item, now, reputation)) for item in items]
    scored.sort(key=lambda row: (row.quality_score, row.item.created_at, row.item.id), reverse=True)
    return scored
