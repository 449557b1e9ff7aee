"""Drop candidates too close to recently promoted topics (Jaccard + keyword overlap)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from core import CandidateItem, RecentTopicRecord


logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.5
_JACCARD_WEIGHT = 0.6
_KEYWORD_WEIGHT = 0.4
MIN_SURVIVORS = 5
LARGE_INPUT = 10

_RAW_WORD_RE = re.compile(r"\w+")

_SYNONYMS = {
    "raise": "increase",
    "raises": "increase",
    "raised": "increase",
    "rise": "increase",
    "rises": "increase",
    "hike": "increase",
    "hikes": "increase",
    "increase": "increase",
    "increases": "increase",
    "increased": "increase",
    "cut": "cut",
    "cuts": "cut",
    "reduce": "cut",
    "reduces": "cut",
    "reduced": "cut",
    "lower": "cut",
    "lowers": "cut",
    "lowered": "cut",
}

# Broad Hong Kong news buckets, matched as lowercase substrings.
TOPIC_KEYWORD_BUCKETS: Dict[str, Tuple[str, ...]] = {
    "typhoon": (
        "typhoon", "風球", "颱風", "台风", "signal", "韋帕", "wipha", "八號", "8號", "no. 8", "no.8",
        "hurricane", "storm", "橙色預警", "黃色預警", "深圳", "shenzhen", "預警生效", "warning", "暴雨",
        "heavy rain",
    ),
    "covid": ("covid", "coronavirus", "新冠", "疫情", "pandemic", "vaccine", "疫苗", "quarantine", "isolation"),
    "politics": (
        "chief executive", "行政長官", "legco", "立法會", "government", "政府", "policy", "政策", "election", "選舉",
    ),
    "economy": ("economy", "經濟", "gdp", "inflation", "通脹", "stock", "股票", "market", "市場", "bank", "銀行"),
    "property": ("property", "物業", "housing", "房屋", "hdb", "公屋", "price", "價格", "rent", "租金"),
    "transport": ("mtr", "港鐵", "airport", "機場", "traffic", "交通", "delay", "延誤", "service", "服務"),
}


def canonical_token(word: str) -> str:
    token = unicodedata.normalize("NFKC", word).lower()
    if token in _SYNONYMS:
        return _SYNONYMS[token]
    if len(token) > 4 and token.endswith("s") and not token.endswith("ss"):
        token = token[:-1]
    return token


def title_tokens(title: str) -> Set[str]:
    """Canonical title tokens longer than two characters."""
    return {canonical_token(word) for word in _RAW_WORD_RE.findall(str(title or "")) if len(word) > 2}


def keyword_tokens(text: str) -> Set[str]:
    """Canonical tokens that are long, numeric, or capitalized in the original text."""
    keywords: Set[str] = set()
    for word in _RAW_WORD_RE.findall(str(text or "")):
        if len(word) > 4 or any(ch.isdigit() for ch in word) or word[:1].isupper():
            keywords.add(canonical_token(word))
    return keywords


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def keyword_overlap(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / min(len(a), len(b))


def _joined(title: str, summary: Optional[str]) -> str:
    return f"{title} {summary or ''}".strip()


def topic_similarity(
    title: str,
    summary: Optional[str],
    recent_title: str,
    recent_summary: Optional[str],
) -> float:
    """``0.6 * title Jaccard + 0.4 * keyword overlap``."""
    title_score = jaccard(title_tokens(title), title_tokens(recent_title))
    keyword_score = keyword_overlap(
        keyword_tokens(_joined(title, summary)),
        keyword_tokens(_joined(recent_title, recent_summary)),
    )
    return _JACCARD_WEIGHT * title_score + _KEYWORD_WEIGHT * keyword_score


def matched_buckets(text: str) -> Set[str]:
    lowered = str(text or "").lower()
    return {
        bucket
        for bucket, keywords in TOPIC_KEYWORD_BUCKETS.items()
        if any(keyword in lowered for keyword in keywords)
    }


@dataclass(frozen=True)
class TopicFilterResult:
    items: List[CandidateItem]
    removed: List[Tuple[str, float]] = field(default_factory=list)
    method: str = "similarity"
    degraded: bool = False

    @property
    def removed_count(self) -> int:
        return len(self.removed)


def _similarity_pass(
    items: Sequence[CandidateItem],
    recent: Sequence[RecentTopicRecord],
    threshold: float,
) -> Tuple[List[CandidateItem], List[Tuple[str, float]]]:
    kept: List[CandidateItem] = []
    removed: List[Tuple[str, float]] = []
    for item in items:
        best = 0.0
        for record in recent:
            score = topic_similarity(item.title, item.summary, record.title, record.summary)
            best = max(best, score)
            if score > threshold:
                break
        if best > threshold:
            removed.append((item.id, round(best, 4)))
            logger.info("topic_filtered id=%s score=%.3f title=%s", item.id, best, item.title[:60])
        else:
            kept.append(item)
    return kept, removed


def _bucket_pass(
    items: Sequence[CandidateItem],
    recent: Iterable[RecentTopicRecord],
) -> Tuple[List[CandidateItem], List[Tuple[str, float]]]:
    covered: Set[str] = set()
    for record in recent:
        covered |= matched_buckets(_joined(record.title, record.summary))
    if not covered:
        return list(items), []

    kept: List[CandidateItem] = []
    removed: List[Tuple[str, float]] = []
    for item in items:
        hits = matched_buckets(_joined(item.title, item.summary)) & covered
        if hits:
            removed.append((item.id, 1.0))
            logger.info("topic_bucket_filtered id=%s buckets=%s", item.id, ",".join(sorted(hits)))
        else:
            kept.append(item)
    return kept, removed


def _starved(kept: Sequence[CandidateItem], total: int) -> bool:
    return len(kept) < MIN_SURVIVORS and total > LARGE_INPUT


def filter_recent_topics(
    items: Sequence[CandidateItem],
    recent: Sequence[RecentTopicRecord],
    *,
    threshold: float = SIMILARITY_THRESHOLD,
) -> TopicFilterResult:
    """
    Remove candidates whose combined similarity to any recent topic exceeds ``threshold``.

    When fewer than 5 of more than 10 candidates would survive, the coarser
    keyword-bucket heuristic is used instead. If that still starves the
    cycle, or nothing survives at all, the input passes through unchanged.
    """
    items = list(items)
    if not items or not recent:
        return TopicFilterResult(items=items, method="similarity")

    kept, removed = _similarity_pass(items, recent, threshold)
    method = "similarity"
    if _starved(kept, len(items)):
        logger.warning(
            "topic_filter_overaggressive input=%s kept=%s fallback=keyword_buckets",
            len(items),
            len(kept),
        )
        kept, removed = _bucket_pass(items, recent)
        method = "keyword_buckets"

    if not kept or _starved(kept, len(items)):
        logger.warning("topic_filter_degraded input=%s kept=%s method=%s passthrough", len(items), len(kept), method)
        return TopicFilterResult(items=items, method="passthrough", degraded=True)

    logger.info("topic_filter input=%s kept=%s removed=%s method=%s", len(items), len(kept), len(removed), method)
    return TopicFilterResult(items=kept, removed=removed, method=method)
