"""Ranking oracle adapter: shortlist building, prompt rendering, response validation, acceptance."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from core import OracleSelection, RecentTopicRecord, ScoredCandidate, SelectedArticle, ShortlistEntry
from intelligence.llm import BaseLLM, Message
from selection.fallback import fallback_select
from selection.normalize import hours_since, time_ago_label
from selection.threshold import ThresholdDecision, compute_threshold
from utils.exceptions import OracleError, OracleResponseError, OracleTimeoutError


logger = logging.getLogger(__name__)

SHORTLIST_SIZE = 15
HARD_FLOOR = 60.0
BORDERLINE_MARGIN = 5.0
FLEX_SCORE = 85.0
FLEX_MIN_COUNT = 3
FLEX_MAX_COUNT = 5
RUBRIC_WEIGHTS = {"I": 4, "N": 3, "D": 2, "S": 1, "U": 5}
RUBRIC_MAX = 5 * sum(RUBRIC_WEIGHTS.values())

BREAKING_NEWS_KEYWORDS = (
    "breaking", "just in", "developing", "urgent", "alert",
    "突發", "快訊", "最新", "緊急", "即時",
)

# Category detection for the recent-coverage line; first match wins.
COVERAGE_KEYWORDS: Dict[str, tuple] = {
    "Weather": ("typhoon", "wipha", "風球", "颱風", "台风", "signal", "weather", "storm", "橙色預警", "深圳", "warning", "暴雨"),
    "Politics": ("陳茂波", "government", "政府", "policy", "政策", "行政長官", "chief executive", "legco", "立法會"),
    "Technology": ("創科", "innovation", "tech", "ai", "人工智能", "startup", "科技", "digital"),
    "Sports": ("足球", "football", "soccer", "運動", "sport", "比賽", "match", "聯賽", "league"),
    "Health": ("健康", "health", "醫療", "medical", "癌症", "cancer", "疫苗", "vaccine"),
    "Business": ("經濟", "economy", "business", "股票", "stock", "market", "銀行", "bank", "金融"),
    "Lifestyle": ("生活", "lifestyle", "飲食", "food", "旅遊", "travel", "時尚", "fashion"),
    "Crime": ("警察", "police", "罪案", "crime", "逮捕", "arrest", "偷竊", "theft"),
    "Education": ("教育", "education", "學校", "school", "大學", "university", "學生", "student"),
    "Transport": ("交通", "transport", "港鐵", "mtr", "巴士", "bus", "機場", "airport"),
    "Housing": ("房屋", "housing", "樓價", "property", "公屋", "public housing", "租金", "rent"),
}
_EMPTY_COVERAGE = "#RECENT_COVERAGE,General,0,Politics,0,Business,0,Technology,0,Sports,0,Health,0,Lifestyle,0,Weather,0"

SYSTEM_PROMPT = (
    "You are HKI's Front-Page Curator. Score each article using the rubric "
    "(I×4 + N×3 + D×2 + S×1 + U×5). Return ONLY a JSON array with scored selections. No extra text."
)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


def is_breaking_news(title: str, content: str) -> bool:
    text = f"{title} {content}".lower()
    return any(keyword in text for keyword in BREAKING_NEWS_KEYWORDS)


def recency_bonus(hours_old: float) -> int:
    if hours_old <= 1:
        return 10
    if hours_old <= 2:
        return 7
    if hours_old <= 4:
        return 3
    return 0


def shortlist_value(row: ScoredCandidate, now: datetime) -> float:
    """Content length plus ten points per whole hour younger than a day."""
    hours = math.floor(hours_since(row.item.created_at, now))
    return row.item.content_length + (24 - hours) * 10


def build_shortlist(
    scored: Sequence[ScoredCandidate],
    now: datetime,
    *,
    limit: int = SHORTLIST_SIZE,
    breaking_fast_lane: bool = False,
) -> List[ShortlistEntry]:
    """
    Bounded list sent to the oracle, ids "01".."NN" in shortlist order.

    With the fast lane on, breaking-news items come first, freshest bonus first.
    """
    ordered = sorted(
        scored,
        key=lambda row: (shortlist_value(row, now), row.quality_score, row.item.id),
        reverse=True,
    )
    if breaking_fast_lane:
        breaking = [row for row in ordered if is_breaking_news(row.item.title, row.item.content)]
        if breaking:
            breaking.sort(key=lambda row: recency_bonus(hours_since(row.item.created_at, now)), reverse=True)
            breaking_ids = {row.item.id for row in breaking}
            ordered = breaking + [row for row in ordered if row.item.id not in breaking_ids]
            logger.info("breaking_fast_lane promoted=%s", len(breaking))

    return [
        ShortlistEntry(
            shortlist_id=f"{idx + 1:02d}",
            index=idx,
            item=row.item,
            quality_score=row.quality_score,
        )
        for idx, row in enumerate(ordered[: max(0, int(limit))])
    ]


def recent_coverage_summary(records: Sequence[RecentTopicRecord]) -> Dict[str, int]:
    """Category -> count over recent promoted items, highest count first."""
    counts: Dict[str, int] = {}
    for record in records:
        text = f"{record.title} {record.summary or ''}".lower()
        category = "General"
        for name, keywords in COVERAGE_KEYWORDS.items():
            if any(keyword in text for keyword in keywords):
                category = name
                break
        counts[category] = counts.get(category, 0) + 1
    return dict(sorted(counts.items(), key=lambda pair: -pair[1]))


def coverage_csv(summary: Dict[str, int]) -> str:
    if not summary:
        return _EMPTY_COVERAGE
    parts = ["#RECENT_COVERAGE"]
    for category, count in summary.items():
        parts.append(f"{category},{count}")
    return ",".join(parts)


@dataclass(frozen=True)
class OracleContext:
    target_count: int
    now: datetime
    recent_coverage: Dict[str, int] = field(default_factory=dict)


class RankingOracle(Protocol):
    """Scores a shortlist; raises ``OracleError`` on any failure."""

    async def score(self, shortlist: Sequence[ShortlistEntry], context: OracleContext) -> List[OracleSelection]:
        ...


class _OracleRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    I: int = Field(ge=1, le=5)
    N: int = Field(ge=1, le=5)
    D: int = Field(ge=1, le=5)
    S: int = Field(ge=1, le=5)
    U: int = Field(ge=1, le=5)
    score: float

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, value: Any) -> str:
        if isinstance(value, bool) or value is None:
            raise ValueError("id must be a string or integer")
        return str(value).strip()

    @field_validator("score")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("score must be finite")
        return value

    def rubric(self) -> int:
        return sum(getattr(self, key) * weight for key, weight in RUBRIC_WEIGHTS.items())


_ROWS = TypeAdapter(List[_OracleRow])


def strip_code_fences(text: str) -> str:
    content = str(text or "").strip()
    if content.startswith("```"):
        content = _FENCE_OPEN_RE.sub("", content)
        content = _FENCE_CLOSE_RE.sub("", content)
    return content.strip()


def composite_score(asserted: float, rubric: int) -> float:
    """Oracle-asserted score, never above what its own rubric supports."""
    clamped = max(0.0, min(100.0, float(asserted)))
    return round(min(clamped, rubric * 100.0 / RUBRIC_MAX), 2)


def _shortlist_index(raw_id: str, size: int) -> Optional[int]:
    digits = raw_id.lstrip("0") or "0"
    if not digits.isdigit():
        return None
    index = int(digits) - 1
    if index < 0 or index >= size:
        return None
    return index


def parse_oracle_response(raw: str, shortlist: Sequence[ShortlistEntry]) -> List[OracleSelection]:
    """
    Validate a ranking response against the shortlist.

    Anything that is not a JSON array of ``{id, I, N, D, S, U, score}`` raises
    ``OracleResponseError``. Entries pointing outside the shortlist are dropped.
    """
    content = strip_code_fences(raw)
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise OracleResponseError("oracle response is not JSON", raw=str(raw)[:500]) from exc
    if not isinstance(payload, list):
        raise OracleResponseError("oracle response is not an array", raw=str(raw)[:500])
    try:
        rows = _ROWS.validate_python(payload)
    except ValidationError as exc:
        raise OracleResponseError("oracle response shape mismatch", raw=str(raw)[:500], errors=exc.error_count()) from exc

    selections: List[OracleSelection] = []
    seen: set = set()
    for row in rows:
        index = _shortlist_index(row.id, len(shortlist))
        if index is None:
            logger.warning("oracle_unknown_id id=%s shortlist_size=%s", row.id, len(shortlist))
            continue
        if index in seen:
            logger.warning("oracle_duplicate_id id=%s", row.id)
            continue
        seen.add(index)
        entry = shortlist[index]
        selections.append(
            OracleSelection(
                shortlist_index=index,
                shortlist_id=entry.shortlist_id,
                impact=row.I,
                novelty=row.N,
                depth=row.D,
                diversity=row.S,
                underserved=row.U,
                asserted_score=row.score,
                composite_score=composite_score(row.score, row.rubric()),
            )
        )
    return selections


def render_selection_prompt(shortlist: Sequence[ShortlistEntry], context: OracleContext) -> str:
    rows = []
    for entry in shortlist:
        item = entry.item
        category = (item.category or "General")[:12].ljust(12)
        source = item.source[:8].ljust(8)
        words = f"{round(item.content_length / 5)}w".rjust(5)
        img = "Y" if item.has_image else "N"
        ago = time_ago_label(item.created_at, context.now).ljust(7)
        title = item.title[:60] + ("..." if len(item.title) > 60 else "")
        rows.append(f'[{entry.shortlist_id}] | {ago} | {category} | {source} | {words} | img:{img} | "{title}"')

    count = context.target_count
    return f"""SCORING RUBRIC (rate each 1-5, then calculate total):
A. Impact on HK (I) - How directly this affects HK residents/economy/policy
B. Novelty/Un-dup (N) - How fresh/unique vs recent coverage
C. Depth of source (D) - Word count & content richness
D. Source diversity (S) - Variety across your final selection
E. Under-served topic (U) - Fills gap in recent coverage

Formula: I×4 + N×3 + D×2 + S×1 + U×5 = Score (0-100)

RECENT TOPIC COVERAGE (last 24h):
{coverage_csv(context.recent_coverage)}
Prioritize categories with the lowest counts above.

AVAILABLE ARTICLES:
ID  | Time    | Category     | Source   | Words | Img | Title
{chr(10).join(rows)}

TASK: Select exactly {count} articles with the highest scores.

HARD RULES:
• At least 3 distinct sources across final set (if possible)
• No more than 1 article per category unless unavoidable
• All IDs must exist in the list above
• Return ONLY the JSON array - no extra text

OUTPUT FORMAT:
[
  {{"id":"01", "I":5, "N":4, "D":3, "S":4, "U":5, "score":86}},
  {{"id":"03", "I":4, "N":5, "D":4, "S":3, "U":4, "score":79}}
]

Select {count} articles now:"""


class LLMRankingOracle:
    """Ranking oracle backed by a chat-completion LLM (Perplexity Sonar by default)."""

    def __init__(self, llm: BaseLLM, timeout_sec: float = 30.0, system_prompt: str = SYSTEM_PROMPT):
        self.llm = llm
        self.timeout_sec = float(timeout_sec)
        self.system_prompt = system_prompt

    async def score(self, shortlist: Sequence[ShortlistEntry], context: OracleContext) -> List[OracleSelection]:
        if not shortlist:
            return []
        messages = [
            Message.system(self.system_prompt),
            Message.user(render_selection_prompt(shortlist, context)),
        ]
        try:
            response = await asyncio.wait_for(self.llm.acomplete(messages, top_p=0.9), timeout=self.timeout_sec)
        except asyncio.TimeoutError as exc:
            raise OracleTimeoutError("ranking oracle timed out", {"timeout_sec": self.timeout_sec}) from exc
        except OracleError:
            raise
        except Exception as exc:
            raise OracleError("ranking oracle call failed", {"provider": self.llm.provider, "error": str(exc)}) from exc

        logger.debug("oracle_raw provider=%s content=%s", self.llm.provider, response.content[:500])
        return parse_oracle_response(response.content, shortlist)


def apply_acceptance(
    selections: Sequence[OracleSelection],
    threshold: float,
    target_count: int,
    *,
    flexible_count: bool = False,
) -> List[OracleSelection]:
    """Hard floor, then threshold, then count (optionally expanded for many high scorers)."""
    accepted: List[OracleSelection] = []
    for selection in selections:
        score = selection.composite_score
        if score < HARD_FLOOR:
            logger.info("oracle_reject_floor id=%s score=%.1f floor=%.0f", selection.shortlist_id, score, HARD_FLOOR)
            continue
        if score < threshold:
            if score >= threshold - BORDERLINE_MARGIN:
                logger.info("oracle_reject_borderline id=%s score=%.1f threshold=%.1f", selection.shortlist_id, score, threshold)
            continue
        accepted.append(selection)

    accepted.sort(key=lambda row: (-row.composite_score, row.shortlist_index))
    if flexible_count:
        high = [row for row in accepted if row.composite_score >= FLEX_SCORE]
        if len(high) > FLEX_MIN_COUNT:
            logger.info("flexible_count expanded=%s", min(len(high), FLEX_MAX_COUNT))
            return high[:FLEX_MAX_COUNT]
    return accepted[: max(0, int(target_count))]


def selection_reason(selection: OracleSelection) -> str:
    if selection.impact >= 4:
        angle = "impact"
    elif selection.underserved >= 4:
        angle = "underserved topic"
    elif selection.novelty >= 4:
        angle = "novelty"
    else:
        angle = "value"
    return f"Selected with score {selection.composite_score:g} ({selection.breakdown()}) - High {angle} for HK readers"


@dataclass(frozen=True)
class OracleOutcome:
    selected: List[SelectedArticle]
    method: str
    validated: int = 0
    error: Optional[str] = None
    threshold: Optional[ThresholdDecision] = None


async def select_with_oracle(
    shortlist: Sequence[ShortlistEntry],
    oracle: RankingOracle,
    context: OracleContext,
    *,
    session_id: str,
    flexible_count: bool = False,
    dynamic_threshold: bool = True,
) -> OracleOutcome:
    """
    Ask the oracle; any failure or an empty accepted set falls back to recency.

    The acceptance threshold is derived from the composite scores of the
    oracle's own validated selections.
    """
    if not shortlist:
        return OracleOutcome(selected=[], method="fallback", error="empty shortlist")

    try:
        selections = await oracle.score(shortlist, context)
    except OracleError as exc:
        logger.warning("oracle_failed session=%s error=%s", session_id, exc)
        return OracleOutcome(
            selected=fallback_select(shortlist, context.target_count, session_id, detail=type(exc).__name__),
            method="fallback",
            error=str(exc),
        )
    except Exception as exc:
        logger.warning("oracle_failed session=%s unexpected=%s", session_id, exc)
        return OracleOutcome(
            selected=fallback_select(shortlist, context.target_count, session_id, detail="oracle error"),
            method="fallback",
            error=str(exc),
        )

    decision = compute_threshold([row.composite_score for row in selections], enabled=dynamic_threshold)
    accepted = apply_acceptance(selections, decision.threshold, context.target_count, flexible_count=flexible_count)
    if not accepted:
        logger.warning(
            "oracle_no_valid_selections session=%s returned=%s threshold=%.1f",
            session_id,
            len(selections),
            decision.threshold,
        )
        return OracleOutcome(
            selected=fallback_select(shortlist, context.target_count, session_id, detail="no validated selections"),
            method="fallback",
            validated=0,
            error="no validated selections",
            threshold=decision,
        )

    picked = [
        SelectedArticle(
            item=shortlist[row.shortlist_index].item,
            selection_reason=selection_reason(row),
            priority_score=row.composite_score,
            session_id=session_id,
            method="perplexity_ai",
            shortlist_id=row.shortlist_id,
        )
        for row in accepted
    ]
    logger.info(
        "oracle_selected session=%s returned=%s accepted=%s threshold=%.1f method=%s",
        session_id,
        len(selections),
        len(picked),
        decision.threshold,
        decision.method,
    )
    return OracleOutcome(selected=picked, method="perplexity_ai", validated=len(selections), threshold=decision)
