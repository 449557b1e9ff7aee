"""Selection committer: one idempotent store write per pick, failures collected."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional, Sequence

from core import CommitFailure, SelectedArticle
from selection.semantic_dedup import SemanticDedupResult
from selection.threshold import ThresholdDecision
from storage.article_store import ArticleStore


logger = logging.getLogger(__name__)

MAX_COMMIT_CONCURRENCY = 8


@dataclass
class CommitReport:
    committed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[CommitFailure] = field(default_factory=list)


def build_selection_metadata(
    article: SelectedArticle,
    *,
    selected_at: datetime,
    dedup: Optional[SemanticDedupResult] = None,
    threshold: Optional[ThresholdDecision] = None,
) -> Dict[str, Any]:
    """The ``selection_metadata`` blob written alongside the selection flag."""
    dedup_stats = None
    if dedup is not None and not dedup.degraded:
        cluster = dedup.cluster_for(article.item.id)
        dedup_stats = {
            "original_count": dedup.input_count,
            "unique_stories": len(dedup.items),
            "duplicates_removed": dedup.duplicates_removed,
            "cluster_info": cluster.provenance() if cluster is not None and cluster.is_duplicate_group else None,
        }
    return {
        "selected_at": selected_at.isoformat(),
        "selection_reason": article.selection_reason,
        "priority_score": article.priority_score,
        "perplexity_selection_id": article.shortlist_id,
        "selection_session": article.session_id,
        "selection_method": article.method,
        "threshold": threshold.threshold if threshold else None,
        "threshold_method": threshold.method if threshold else None,
        "deduplication_stats": dedup_stats,
        "ai_category_assigned": article.ai_category,
        "category_confidence": article.category_confidence,
    }


class SelectionCommitter:
    """Marks picks as selected in the store with full provenance."""

    def __init__(
        self,
        store: ArticleStore,
        concurrency: int = MAX_COMMIT_CONCURRENCY,
        category_min_confidence: int = 6,
    ):
        self.store = store
        self.concurrency = max(1, min(int(concurrency), MAX_COMMIT_CONCURRENCY))
        self.category_min_confidence = int(category_min_confidence)

    def _relabel(self, article: SelectedArticle) -> Optional[str]:
        if not article.ai_category or article.category_confidence is None:
            return None
        if article.category_confidence < self.category_min_confidence:
            return None
        if article.ai_category == article.item.category:
            return None
        return article.ai_category

    async def commit(
        self,
        articles: Sequence[SelectedArticle],
        *,
        dedup: Optional[SemanticDedupResult] = None,
        threshold: Optional[ThresholdDecision] = None,
        now: Optional[datetime] = None,
    ) -> CommitReport:
        report = CommitReport()
        unique: Dict[str, SelectedArticle] = {}
        for article in articles:
            unique.setdefault(article.item.id, article)
        if not unique:
            return report

        selected_at = now or datetime.now(timezone.utc)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _write(article: SelectedArticle) -> None:
            article_id = article.item.id
            metadata = build_selection_metadata(article, selected_at=selected_at, dedup=dedup, threshold=threshold)
            async with semaphore:
                try:
                    written = await self.store.mark_selected(article_id, metadata, category=self._relabel(article))
                except Exception as exc:
                    logger.warning("commit_failed id=%s session=%s error=%s", article_id, article.session_id, exc)
                    report.failures.append(CommitFailure(article_id=article_id, error=str(exc)))
                    return
            if written:
                report.committed.append(article_id)
                logger.info(
                    "commit_ok id=%s session=%s method=%s score=%.1f",
                    article_id,
                    article.session_id,
                    article.method,
                    article.priority_score,
                )
            else:
                report.skipped.append(article_id)
                logger.info("commit_skip_already_selected id=%s", article_id)

        await asyncio.gather(*(_write(article) for article in unique.values()))
        report.committed.sort()
        report.skipped.sort()
        report.failures.sort(key=lambda failure: failure.article_id)
        return report
