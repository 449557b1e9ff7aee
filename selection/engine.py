"""Selection cycle entry point wiring every stage from harvest to commit."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
from time import perf_counter
from typing import List, Optional
import uuid

from config import Settings
from core import CycleCounts, CycleResult, RecentTopicRecord, SelectedArticle, TierTable
from processing.embedder import BaseEmbedder
from selection.categorizer import CategoryOracle, apply_categories
from selection.committer import SelectionCommitter
from selection.harvester import harvest
from selection.lexical_dedup import dedup_lexical
from selection.oracle import OracleContext, RankingOracle, build_shortlist, recent_coverage_summary, select_with_oracle
from selection.scoring import score_candidates
from selection.semantic_dedup import PairVerifier, SemanticDedupResult, dedup_semantic
from selection.tiers import DEFAULT_TIERS, load_tier_table
from selection.topic_filter import filter_recent_topics
from storage.article_store import ArticleStore


logger = logging.getLogger(__name__)

RECENT_TOPIC_LIMIT = 40


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id(now: Optional[datetime] = None) -> str:
    moment = now or _utcnow()
    return f"selection_{int(moment.timestamp() * 1000)}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class EngineConfig:
    """Explicit per-cycle switches; nothing here is read from process globals."""

    dynamic_threshold: bool = True
    flexible_count: bool = False
    breaking_fast_lane: bool = False
    semantic_dedup: bool = True
    categorization: bool = False
    topic_window_days: int = 4
    staleness_hours: int = 4
    recent_title_hours: int = 24
    shortlist_size: int = 15
    oracle_timeout_sec: float = 30.0
    commit_concurrency: int = 8
    semantic_window_hours: int = 24
    semantic_link_threshold: float = 0.5
    category_min_confidence: int = 6
    tiers: TierTable = field(default_factory=lambda: DEFAULT_TIERS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        selection = settings.selection
        return cls(
            dynamic_threshold=selection.dynamic_threshold,
            flexible_count=selection.flexible_count,
            breaking_fast_lane=selection.breaking_fast_lane,
            semantic_dedup=selection.semantic_dedup,
            categorization=selection.categorization,
            topic_window_days=selection.topic_window_days,
            staleness_hours=selection.staleness_hours,
            recent_title_hours=selection.recent_title_hours,
            shortlist_size=selection.shortlist_size,
            oracle_timeout_sec=settings.oracle.timeout_sec,
            commit_concurrency=selection.commit_concurrency,
            semantic_window_hours=selection.semantic_window_hours,
            semantic_link_threshold=selection.semantic_link_threshold,
            category_min_confidence=selection.category_min_confidence,
            tiers=load_tier_table(selection.tiers_json),
        )


class SelectionEngine:
    """Runs one selection cycle against a store and its external collaborators."""

    def __init__(
        self,
        store: ArticleStore,
        oracle: RankingOracle,
        *,
        embedder: Optional[BaseEmbedder] = None,
        categorizer: Optional[CategoryOracle] = None,
        pair_verifier: Optional[PairVerifier] = None,
        retry_wait=None,
    ):
        self.store = store
        self.oracle = oracle
        self.embedder = embedder
        self.categorizer = categorizer
        self.pair_verifier = pair_verifier
        self.retry_wait = retry_wait

    async def aclose(self) -> None:
        """Close the LLM clients owned by the oracle, verifier and categorizer."""
        seen = set()
        for collaborator in (self.oracle, self.pair_verifier, self.categorizer):
            llm = getattr(collaborator, "llm", None)
            if llm is None or id(llm) in seen:
                continue
            seen.add(id(llm))
            try:
                await llm.aclose()
            except Exception:
                logger.debug("LLM close skipped", exc_info=True)

    async def _recent_topics(self, now: datetime, config: EngineConfig, degradations: List[str]) -> List[RecentTopicRecord]:
        since = now - timedelta(days=config.topic_window_days)
        try:
            return list(await self.store.fetch_recent_topics(since, RECENT_TOPIC_LIMIT))
        except Exception as exc:
            logger.warning("recent_topics_unavailable error=%s", exc)
            degradations.append(f"recent_topics_unavailable: {exc}")
            return []

    async def _semantic(self, items, config: EngineConfig, degradations: List[str]) -> Optional[SemanticDedupResult]:
        if not config.semantic_dedup:
            return None
        if self.embedder is None:
            degradations.append("semantic_dedup_unavailable: no embedder configured")
            return None
        result = await dedup_semantic(
            items,
            self.embedder,
            window_hours=config.semantic_window_hours,
            link_threshold=config.semantic_link_threshold,
            verifier=self.pair_verifier,
        )
        if result.degraded:
            degradations.append(f"semantic_dedup_degraded: {result.error}")
        return result

    @staticmethod
    def _attach_clusters(selected: List[SelectedArticle], semantic: Optional[SemanticDedupResult]) -> List[SelectedArticle]:
        if semantic is None or semantic.degraded:
            return selected
        updated = []
        for article in selected:
            cluster = semantic.cluster_for(article.item.id)
            if cluster is not None and cluster.is_duplicate_group:
                article = article.model_copy(update={"cluster_info": cluster.provenance()})
            updated.append(article)
        return updated

    async def run_cycle(
        self,
        count: int = 3,
        config: Optional[EngineConfig] = None,
        *,
        now: Optional[datetime] = None,
        stop_event: Optional[asyncio.Event] = None,
        session_id: Optional[str] = None,
    ) -> CycleResult:
        """
        Run harvest -> dedup -> topic filter -> score -> oracle/fallback -> commit.

        Only ``NoCandidatesError`` escapes. A set ``stop_event`` observed before the
        oracle stage ends the cycle as "cancelled" with nothing committed; once the
        commit starts it always runs to completion.
        """
        config = config or EngineConfig()
        now = now or _utcnow()
        session_id = session_id or new_session_id(now)
        started = perf_counter()
        counts = CycleCounts()
        degradations: List[str] = []
        logger.info("cycle_start session=%s count=%s", session_id, count)

        harvested = await harvest(
            self.store,
            config.tiers,
            now=now,
            staleness_hours=config.staleness_hours,
            recent_title_hours=config.recent_title_hours,
            retry_wait=self.retry_wait,
        )
        counts.harvested = len(harvested.items)
        for tier in harvested.tiers:
            if tier.error:
                degradations.append(f"tier_unavailable:{tier.tier}: {tier.error}")

        lexical = dedup_lexical(harvested.items)
        counts.after_lexical = len(lexical.items)

        semantic = await self._semantic(lexical.items, config, degradations)
        survivors = semantic.items if semantic is not None else lexical.items
        counts.after_semantic = len(survivors)

        recent = await self._recent_topics(now, config, degradations)
        topic = filter_recent_topics(survivors, recent)
        if topic.degraded:
            degradations.append("topic_filter_passthrough")
        counts.after_topic_filter = len(topic.items)

        scored = score_candidates(topic.items, now)

        if stop_event is not None and stop_event.is_set():
            logger.info("cycle_cancelled session=%s stage=pre_oracle", session_id)
            return CycleResult(
                session_id=session_id,
                status="cancelled",
                counts=counts,
                degradations=degradations,
                started_at=now,
                finished_at=_utcnow(),
            )

        shortlist = build_shortlist(
            scored,
            now,
            limit=config.shortlist_size,
            breaking_fast_lane=config.breaking_fast_lane,
        )
        counts.shortlisted = len(shortlist)
        context = OracleContext(target_count=count, now=now, recent_coverage=recent_coverage_summary(recent))
        outcome = await select_with_oracle(
            shortlist,
            self.oracle,
            context,
            session_id=session_id,
            flexible_count=config.flexible_count,
            dynamic_threshold=config.dynamic_threshold,
        )
        decision = outcome.threshold
        if outcome.method == "fallback" and outcome.error:
            degradations.append(f"oracle_fallback: {outcome.error}")

        selected = self._attach_clusters(outcome.selected, semantic)
        if config.categorization and self.categorizer is not None and selected:
            selected, note = await apply_categories(selected, self.categorizer)
            if note:
                degradations.append(note)

        committer = SelectionCommitter(
            self.store,
            concurrency=config.commit_concurrency,
            category_min_confidence=config.category_min_confidence,
        )
        report = await asyncio.shield(committer.commit(selected, dedup=semantic, threshold=decision, now=now))
        counts.committed = len(report.committed)
        counts.skipped = len(report.skipped)

        logger.info(
            "cycle_done session=%s method=%s harvested=%s unique=%s shortlisted=%s committed=%s failures=%s elapsed=%.2fs",
            session_id,
            outcome.method,
            counts.harvested,
            counts.after_semantic,
            counts.shortlisted,
            counts.committed,
            len(report.failures),
            perf_counter() - started,
        )
        return CycleResult(
            session_id=session_id,
            status="completed",
            selected=selected,
            method=outcome.method,
            threshold=decision.threshold if decision else None,
            threshold_method=decision.method if decision else None,
            counts=counts,
            degradations=degradations,
            commit_failures=report.failures,
            started_at=now,
            finished_at=_utcnow(),
        )
