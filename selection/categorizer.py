"""Optional categorization oracle: relabel picks against a closed category set."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core import SelectedArticle
from intelligence.llm import BaseLLM, Message
from selection.oracle import strip_code_fences
from utils.exceptions import CategorizationError


logger = logging.getLogger(__name__)

CATEGORY_ENUM = (
    "Top Stories",
    "Tech & Science",
    "Finance",
    "Arts & Culture",
    "Sports",
    "Entertainment",
    "Politics",
    "Local",
    "International",
    "General",
)

_GUIDELINES = """- **Top Stories**: Breaking news, major government announcements, significant Hong Kong developments, major accidents/incidents
- **Tech & Science**: Technology companies, AI/innovation, scientific research, startup news, digital transformation
- **Finance**: Stock market, economy, business mergers, banking, property market, cryptocurrency, economic policy
- **Arts & Culture**: Museums, art exhibitions, cultural events, books, traditional culture, heritage, festivals
- **Sports**: All sports coverage, Olympics, local teams, athlete profiles, sports events
- **Entertainment**: Movies, TV shows, celebrities, music, gaming, lifestyle trends, social media
- **Politics**: Government policy, political parties, elections, legislative council, political figures, political protests
- **Local**: Hong Kong-specific news, local community events, district news, local infrastructure, local social issues
- **International**: Global news, foreign affairs, international relations, overseas developments affecting Hong Kong
- **General**: Miscellaneous news that doesn't fit other categories, human interest stories, general announcements"""


@dataclass(frozen=True)
class CategoryVerdict:
    article_id: str
    category: str
    confidence: int


class CategoryOracle(Protocol):
    async def categorize(self, articles: Sequence[SelectedArticle]) -> List[CategoryVerdict]:
        ...


class _CategoryRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    category: str
    confidence: int = Field(ge=1, le=10)


_CATEGORY_ROWS = TypeAdapter(List[_CategoryRow])


def render_category_prompt(articles: Sequence[SelectedArticle]) -> str:
    blocks = []
    for idx, article in enumerate(articles, start=1):
        item = article.item
        summary = item.summary or (item.content[:200] + "...")
        blocks.append(f"ID: {idx}\nTitle: {item.title}\nSummary: {summary}\nCurrent Category: {item.category}\n---")
    categories = "\n".join(f"- {name}" for name in CATEGORY_ENUM)
    return (
        "Categorize each Hong Kong news article into the most appropriate category from the available options.\n\n"
        f"AVAILABLE CATEGORIES:\n{categories}\n\n"
        f"CATEGORIZATION GUIDELINES:\n{_GUIDELINES}\n\n"
        f"ARTICLES TO CATEGORIZE:\n{chr(10).join(blocks)}\n\n"
        "TASK: Return a JSON array with categorizations. Include confidence scores (1-10).\n\n"
        'FORMAT:\n[\n  {"id": 1, "category": "Tech & Science", "confidence": 9}\n]\n\n'
        "Return ONLY the JSON array:"
    )


def parse_category_response(raw: str, articles: Sequence[SelectedArticle]) -> List[CategoryVerdict]:
    try:
        payload: Any = json.loads(strip_code_fences(raw))
        rows = _CATEGORY_ROWS.validate_python(payload)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise CategorizationError("invalid categorization response", {"error": str(exc)[:300]}) from exc

    verdicts: List[CategoryVerdict] = []
    for row in rows:
        if not 1 <= row.id <= len(articles):
            continue
        if row.category not in CATEGORY_ENUM:
            logger.info("category_outside_enum id=%s category=%s", row.id, row.category)
            continue
        verdicts.append(
            CategoryVerdict(
                article_id=articles[row.id - 1].item.id,
                category=row.category,
                confidence=row.confidence,
            )
        )
    return verdicts


class LLMCategorizer:
    """Categorization oracle backed by a chat-completion LLM (gpt-4o-mini by default)."""

    def __init__(self, llm: BaseLLM, timeout_sec: float = 30.0):
        self.llm = llm
        self.timeout_sec = float(timeout_sec)

    async def categorize(self, articles: Sequence[SelectedArticle]) -> List[CategoryVerdict]:
        if not articles:
            return []
        messages = [
            Message.system("You are an expert news categorizer. Return ONLY valid JSON arrays with article categorizations."),
            Message.user(render_category_prompt(articles)),
        ]
        try:
            response = await asyncio.wait_for(self.llm.acomplete(messages, temperature=0.3), timeout=self.timeout_sec)
        except asyncio.TimeoutError as exc:
            raise CategorizationError("categorization timed out", {"timeout_sec": self.timeout_sec}) from exc
        except Exception as exc:
            raise CategorizationError("categorization call failed", {"error": str(exc)}) from exc
        return parse_category_response(response.content, articles)


async def apply_categories(
    articles: Sequence[SelectedArticle],
    categorizer: CategoryOracle,
) -> Tuple[List[SelectedArticle], Optional[str]]:
    """Attach verdicts to picks. Returns the picks and a degradation note on failure."""
    try:
        verdicts = await categorizer.categorize(articles)
    except Exception as exc:
        logger.warning("categorization_degraded count=%s error=%s", len(articles), exc)
        return list(articles), f"categorization_failed: {exc}"

    by_id = {verdict.article_id: verdict for verdict in verdicts}
    updated: List[SelectedArticle] = []
    for article in articles:
        verdict = by_id.get(article.item.id)
        if verdict is None:
            updated.append(article)
            continue
        updated.append(
            article.model_copy(update={"ai_category": verdict.category, "category_confidence": verdict.confidence})
        )
    logger.info("categorization_applied count=%s labelled=%s", len(articles), len(by_id))
    return updated, None
