from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import json

import pytest
from tenacity import wait_none

from core import TierConfig, TierTable
from intelligence.llm import BaseLLM, LLMResponse
from processing.embedder import HashingEmbedder
from selection.categorizer import LLMCategorizer
from selection.engine import EngineConfig, SelectionEngine, new_session_id
from selection.oracle import LLMRankingOracle, parse_oracle_response
from selection.semantic_dedup import LLMPairVerifier
from storage import InMemoryArticleStore, StoredArticle
from utils.exceptions import NoCandidatesError, OracleError


NOW = datetime.now(timezone.utc).replace(microsecond=0)

TIERS = TierTable(
    tiers=[
        TierConfig(name="premium", sources=frozenset({"HKFP", "scmp"}), quota=2, max_age_hours=12, min_content_chars=200, weight=100),
        TierConfig(name="local", sources=frozenset({"HK01", "am730"}), quota=2, max_age_hours=3, min_content_chars=50, weight=60),
    ]
)


def _row(
    row_id: str,
    source: str,
    minutes_ago: int,
    *,
    title: str | None = None,
    summary: str | None = None,
    chars: int = 900,
    **fields,
) -> StoredArticle:
    return StoredArticle(
        id=row_id,
        title=title or f"Hong Kong story {row_id}",
        summary=summary,
        content="x" * chars,
        url=f"https://example.com/{row_id}",
        source=source,
        created_at=NOW - timedelta(minutes=minutes_ago),
        **fields,
    )


def _four_fresh_rows() -> list:
    return [
        _row("p1", "HKFP", 10, title="Legco passes 2025 budget after marathon debate"),
        _row("p2", "scmp", 30, title="Hang Seng index closes at three-year high"),
        _row("l1", "HK01", 20, title="Sai Kung hiking trail reopens after repairs"),
        _row("l2", "am730", 40, title="Hong Kong Sevens tickets sell out in minutes"),
    ]


class UnreachableOracle:
    def __init__(self):
        self.calls = 0

    async def score(self, shortlist, context):
        self.calls += 1
        raise OracleError("ranking oracle call failed", {"error": "connection refused"})


class ClosingLLM(BaseLLM):
    def __init__(self, model: str):
        super().__init__(model)
        self.closed = 0

    @property
    def provider(self) -> str:
        return "closing"

    async def acomplete(self, messages, **kwargs) -> LLMResponse:
        return LLMResponse(content="[]", model=self.model)

    async def aclose(self) -> None:
        self.closed += 1


class ScriptedOracle:
    def __init__(self, rows):
        self.rows = rows
        self.shortlist = []

    async def score(self, shortlist, context):
        self.shortlist = list(shortlist)
        return parse_oracle_response(json.dumps(self.rows), shortlist)


def _config(**overrides) -> EngineConfig:
    defaults = {"tiers": TIERS, "semantic_dedup": False}
    defaults.update(overrides)
    return EngineConfig(**defaults)


def test_session_id_format() -> None:
    session_id = new_session_id(datetime(2025, 7, 20, tzinfo=timezone.utc))

    prefix, millis, suffix = session_id.split("_")
    assert prefix == "selection"
    assert millis == str(int(datetime(2025, 7, 20, tzinfo=timezone.utc).timestamp() * 1000))
    assert len(suffix) == 6


@pytest.mark.asyncio
async def test_unreachable_oracle_commits_most_recent_via_fallback() -> None:
    store = InMemoryArticleStore(_four_fresh_rows())
    engine = SelectionEngine(store, UnreachableOracle(), retry_wait=wait_none())

    result = await engine.run_cycle(2, _config(), now=NOW)

    assert result.status == "completed"
    assert result.method == "fallback"
    assert result.threshold is None
    assert result.threshold_method is None
    assert sorted(article.item.id for article in result.selected) == ["l1", "p1"]
    assert result.counts.harvested == 4
    assert result.counts.committed == 2
    assert any(note.startswith("oracle_fallback") for note in result.degradations)

    selected = [row_id for row_id in ("p1", "p2", "l1", "l2") if store.get(row_id).selected_for_enhancement]
    assert sorted(selected) == ["l1", "p1"]
    metadata = store.get("p1").selection_metadata
    assert metadata["selection_method"] == "fallback"
    assert metadata["priority_score"] == 75.0
    assert metadata["selection_session"] == result.session_id


@pytest.mark.asyncio
async def test_oracle_pick_above_threshold_is_committed() -> None:
    store = InMemoryArticleStore(_four_fresh_rows())
    oracle = ScriptedOracle([{"id": "02", "I": 5, "N": 5, "D": 5, "S": 5, "U": 5, "score": 96}])
    engine = SelectionEngine(store, oracle, retry_wait=wait_none())

    result = await engine.run_cycle(3, _config(), now=NOW)

    assert result.method == "perplexity_ai"
    assert len(result.selected) == 1
    picked = result.selected[0]
    assert picked.item.id == oracle.shortlist[1].item.id
    assert picked.priority_score == 96.0
    assert store.get(picked.item.id).selection_metadata["perplexity_selection_id"] == "02"
    assert result.counts.shortlisted == 4


@pytest.mark.asyncio
async def test_stop_before_oracle_cancels_without_commit() -> None:
    store = InMemoryArticleStore(_four_fresh_rows())
    oracle = UnreachableOracle()
    engine = SelectionEngine(store, oracle, retry_wait=wait_none())
    stop_event = asyncio.Event()
    stop_event.set()

    result = await engine.run_cycle(2, _config(), now=NOW, stop_event=stop_event)

    assert result.status == "cancelled"
    assert result.selected == []
    assert oracle.calls == 0
    assert not any(store.get(row_id).selected_for_enhancement for row_id in ("p1", "p2", "l1", "l2"))


@pytest.mark.asyncio
async def test_empty_pool_raises_no_candidates() -> None:
    engine = SelectionEngine(InMemoryArticleStore(), UnreachableOracle(), retry_wait=wait_none())

    with pytest.raises(NoCandidatesError):
        await engine.run_cycle(2, _config(), now=NOW)


@pytest.mark.asyncio
async def test_cross_source_duplicate_is_collapsed_and_recorded() -> None:
    story = (
        "The Observatory hoisted the No. 8 gale or storm signal on Sunday morning as Typhoon Wipha "
        "moved closer to the territory, with ferry services suspended and schools closed"
    )
    rows = [
        _row("t_hkfp", "HKFP", 10, title="Typhoon Signal No. 8 Raised", summary=story, chars=800),
        _row("t_scmp", "scmp", 20, title="HK Raises No.8 Typhoon Signal", summary=story, chars=1500),
        _row("l1", "HK01", 15, title="Sai Kung hiking trail reopens after repairs",
             summary="Country park authorities finished restoring the coastal path damaged by landslides last year"),
    ]
    store = InMemoryArticleStore(rows)
    engine = SelectionEngine(store, UnreachableOracle(), embedder=HashingEmbedder(dimensions=512), retry_wait=wait_none())

    result = await engine.run_cycle(3, _config(semantic_dedup=True), now=NOW)

    assert result.counts.after_lexical == 3
    assert result.counts.after_semantic == 2
    assert sorted(article.item.id for article in result.selected) == ["l1", "t_scmp"]
    assert store.get("t_hkfp").selected_for_enhancement is False
    stats = store.get("t_scmp").selection_metadata["deduplication_stats"]
    assert stats["duplicates_removed"] == 1
    assert stats["cluster_info"]["absorbed_sources"] == ["HKFP"]
    assert store.get("l1").selection_metadata["deduplication_stats"]["cluster_info"] is None


@pytest.mark.asyncio
async def test_semantic_dedup_without_embedder_is_reported() -> None:
    store = InMemoryArticleStore(_four_fresh_rows())
    engine = SelectionEngine(store, UnreachableOracle(), retry_wait=wait_none())

    result = await engine.run_cycle(1, _config(semantic_dedup=True), now=NOW)

    assert result.status == "completed"
    assert any(note.startswith("semantic_dedup_unavailable") for note in result.degradations)


@pytest.mark.asyncio
async def test_recent_topics_read_failure_degrades() -> None:
    class NoTopicsStore(InMemoryArticleStore):
        async def fetch_recent_topics(self, since, limit=40):
            raise RuntimeError("topics view missing")

    store = NoTopicsStore(_four_fresh_rows())
    engine = SelectionEngine(store, UnreachableOracle(), retry_wait=wait_none())

    result = await engine.run_cycle(1, _config(), now=NOW)

    assert result.counts.committed == 1
    assert any("topics view missing" in note for note in result.degradations)


@pytest.mark.asyncio
async def test_recently_promoted_topic_is_filtered() -> None:
    promoted = _row("done", "HKFP", 60 * 20, title="MTR fare increase announced", is_enhanced=True)
    rows = _four_fresh_rows() + [
        promoted,
        _row("mtr", "scmp", 5, title="MTR to raise fares starting next month", chars=1900),
    ]
    tiers = TierTable(tiers=[tier.model_copy(update={"quota": 5}) for tier in TIERS.tiers])
    store = InMemoryArticleStore(rows)
    engine = SelectionEngine(store, UnreachableOracle(), retry_wait=wait_none())

    result = await engine.run_cycle(5, _config(tiers=tiers), now=NOW)

    assert result.counts.after_semantic == 5
    assert result.counts.after_topic_filter == 4
    assert "mtr" not in {article.item.id for article in result.selected}


@pytest.mark.asyncio
async def test_oracle_scores_set_threshold_for_strong_candidate_pool() -> None:
    rows = [
        _row("p1", "HKFP", 10, title="Legco passes 2025 budget after marathon debate", chars=2500),
        _row("p2", "scmp", 20, title="Hang Seng index closes at three-year high", chars=2500),
        _row("l1", "HK01", 30, title="Sai Kung hiking trail reopens after repairs", chars=2500),
        _row("l2", "am730", 40, title="Hong Kong Sevens tickets sell out in minutes", chars=2500),
    ]
    store = InMemoryArticleStore(rows)
    oracle = ScriptedOracle(
        [{"id": f"{idx:02d}", "I": 5, "N": 4, "D": 4, "S": 4, "U": 5, "score": 84} for idx in range(1, 5)]
    )
    engine = SelectionEngine(store, oracle, retry_wait=wait_none())

    result = await engine.run_cycle(3, _config(), now=NOW)

    assert result.method == "perplexity_ai"
    assert result.threshold == 84.0
    assert result.threshold_method == "dynamic"
    assert [article.priority_score for article in result.selected] == [84.0, 84.0, 84.0]
    picked = result.selected[0].item.id
    assert store.get(picked).selection_metadata["threshold"] == 84.0
    assert store.get(picked).selection_metadata["selection_method"] == "perplexity_ai"


@pytest.mark.asyncio
async def test_aclose_releases_each_llm_client_once() -> None:
    ranking = ClosingLLM("ranking")
    helper = ClosingLLM("helper")
    engine = SelectionEngine(
        InMemoryArticleStore(),
        LLMRankingOracle(ranking),
        categorizer=LLMCategorizer(helper),
        pair_verifier=LLMPairVerifier(helper),
        retry_wait=wait_none(),
    )

    await engine.aclose()

    assert ranking.closed == 1
    assert helper.closed == 1
