from __future__ import annotations

from datetime import datetime, timedelta, timezone
import math
from typing import Dict, List

import numpy as np
import pytest

from core import CandidateItem
from intelligence.llm import BaseLLM, LLMResponse
from processing.embedder import BaseEmbedder, HashingEmbedder
from selection.semantic_dedup import LLMPairVerifier, dedup_semantic, pair_score, title_jaccard


NOW = datetime(2025, 7, 20, 12, 0, tzinfo=timezone.utc)


def _item(
    item_id: str,
    title: str,
    *,
    source: str = "HKFP",
    chars: int = 500,
    minutes_ago: int = 10,
    summary: str | None = None,
) -> CandidateItem:
    return CandidateItem(
        id=item_id,
        title=title,
        summary=summary,
        content="x" * chars,
        url=f"https://example.com/{item_id}",
        source=source,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


class VectorEmbedder(BaseEmbedder):
    """Returns preset vectors keyed by the title at the start of the embedding text."""

    def __init__(self, vectors: Dict[str, List[float]]):
        super().__init__("preset")
        self.vectors = vectors

    @property
    def dimension(self) -> int:
        return 2

    def embed(self, texts):
        rows = []
        for text in texts:
            key = next(title for title in self.vectors if text.startswith(title.lower()))
            rows.append(self.vectors[key])
        return np.asarray(rows, dtype=float)


class ConstantEmbedder(BaseEmbedder):
    def __init__(self):
        super().__init__("constant")

    @property
    def dimension(self) -> int:
        return 3

    def embed(self, texts):
        return np.tile(np.array([1.0, 0.0, 0.0]), (len(texts), 1))


class BrokenEmbedder(ConstantEmbedder):
    def embed(self, texts):
        raise RuntimeError("embedding backend down")


class ShortEmbedder(ConstantEmbedder):
    def embed(self, texts):
        return np.zeros((1, 3))


class StubVerifier:
    def __init__(self, answer: bool = True, error: Exception | None = None):
        self.answer = answer
        self.error = error
        self.calls = 0

    async def same_story(self, first: CandidateItem, second: CandidateItem) -> bool:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.answer


def _borderline_pair() -> tuple:
    # cosine 0.705 with disjoint titles: pair score 0.4935, below the link threshold
    first = _item("p1", "Harbour ferry fares frozen", minutes_ago=5, chars=800)
    second = _item("p2", "Kowloon pier operator statement", minutes_ago=15, chars=400)
    angle = math.sqrt(1 - 0.705 ** 2)
    embedder = VectorEmbedder(
        {
            first.title: [1.0, 0.0],
            second.title: [0.705, angle],
        }
    )
    return first, second, embedder


def test_pair_score_weights() -> None:
    assert pair_score(1.0, 0.0) == pytest.approx(0.7)
    assert pair_score(0.5, 1.0) == pytest.approx(0.65)
    assert title_jaccard("Typhoon Signal", "typhoon signal") == 1.0
    assert title_jaccard("", "anything") == 0.0


@pytest.mark.asyncio
async def test_same_story_from_two_sources_forms_one_cluster() -> None:
    first = _item("a", "Typhoon Signal No. 8 Raised", source="HKFP", chars=800, minutes_ago=10)
    second = _item("b", "HK Raises No.8 Typhoon Signal", source="RTHK", chars=1500, minutes_ago=20)

    result = await dedup_semantic([first, second], ConstantEmbedder())

    assert not result.degraded
    assert [item.id for item in result.items] == ["b"]
    assert len(result.clusters) == 1
    cluster = result.clusters[0]
    assert cluster.size == 2
    assert cluster.representative.id == "b"
    assert cluster.provenance()["absorbed_sources"] == ["HKFP"]
    assert result.duplicates_removed == 1


@pytest.mark.asyncio
async def test_pairs_outside_time_window_are_not_compared() -> None:
    first = _item("a", "Typhoon Signal No. 8 Raised", minutes_ago=10)
    second = _item("b", "Typhoon Signal No. 8 Raised again", minutes_ago=60 * 30)

    result = await dedup_semantic([first, second], ConstantEmbedder(), window_hours=24)

    assert sorted(item.id for item in result.items) == ["a", "b"]
    assert all(cluster.size == 1 for cluster in result.clusters)


@pytest.mark.asyncio
async def test_every_input_lands_in_exactly_one_cluster() -> None:
    items = [
        _item("t1", "Typhoon Wipha signal 8 hoisted", summary="Observatory raises signal 8 as Wipha nears"),
        _item("t2", "Signal 8 hoisted as Wipha nears", summary="Observatory raises signal 8 as Wipha nears"),
        _item("m1", "MTR fare increase announced", summary="Rail operator adjusts fares next month"),
        _item("s1", "Hong Kong Sevens sells out", summary="Rugby tournament tickets gone in minutes"),
        _item("e1", "Cathay adds Seoul flights", summary="Airline expands Korea schedule"),
    ]

    result = await dedup_semantic(items, HashingEmbedder(dimensions=256))

    member_ids = sorted(member.id for cluster in result.clusters for member in cluster.members)
    assert member_ids == sorted(item.id for item in items)
    assert len(result.items) == len(result.clusters)
    assert {item.id for item in result.items} <= {item.id for item in items}


@pytest.mark.asyncio
async def test_embedder_failure_degrades_to_passthrough() -> None:
    items = [_item("a", "Story A", minutes_ago=5), _item("b", "Story B", minutes_ago=1)]

    result = await dedup_semantic(items, BrokenEmbedder())

    assert result.degraded
    assert "embedding backend down" in (result.error or "")
    assert [item.id for item in result.items] == ["b", "a"]
    assert result.duplicates_removed == 0
    assert result.stats()["unique_stories"] == 2


@pytest.mark.asyncio
async def test_wrong_vector_count_degrades_to_passthrough() -> None:
    items = [_item("a", "Story A"), _item("b", "Story B")]

    result = await dedup_semantic(items, ShortEmbedder())

    assert result.degraded
    assert len(result.items) == 2


@pytest.mark.asyncio
async def test_single_item_needs_no_embedding() -> None:
    result = await dedup_semantic([_item("a", "Only story")], BrokenEmbedder())

    assert not result.degraded
    assert [item.id for item in result.items] == ["a"]


@pytest.mark.asyncio
async def test_borderline_pair_merged_when_verifier_confirms() -> None:
    first, second, embedder = _borderline_pair()
    verifier = StubVerifier(answer=True)

    result = await dedup_semantic([first, second], embedder, verifier=verifier)

    assert verifier.calls == 1
    assert result.verifications == 1
    assert [item.id for item in result.items] == ["p1"]


@pytest.mark.asyncio
async def test_borderline_pair_kept_apart_without_confirmation() -> None:
    first, second, embedder = _borderline_pair()

    rejected = await dedup_semantic([first, second], embedder, verifier=StubVerifier(answer=False))
    unverified = await dedup_semantic([first, second], embedder)
    failing = await dedup_semantic([first, second], embedder, verifier=StubVerifier(error=RuntimeError("llm down")))

    for result in (rejected, unverified, failing):
        assert sorted(item.id for item in result.items) == ["p1", "p2"]
        assert not result.degraded


@pytest.mark.asyncio
async def test_verification_budget_is_respected() -> None:
    first, second, embedder = _borderline_pair()
    verifier = StubVerifier(answer=True)

    result = await dedup_semantic([first, second], embedder, verifier=verifier, max_verifications=0)

    assert verifier.calls == 0
    assert len(result.items) == 2


class ScriptedLLM(BaseLLM):
    def __init__(self, reply: str):
        super().__init__("scripted")
        self.reply = reply
        self.kwargs = {}

    @property
    def provider(self) -> str:
        return "scripted"

    async def acomplete(self, messages, **kwargs) -> LLMResponse:
        self.kwargs = kwargs
        return LLMResponse(content=self.reply, model=self.model)


@pytest.mark.asyncio
async def test_llm_pair_verifier_reads_single_word_answer() -> None:
    first = _item("a", "Typhoon Signal No. 8 Raised")
    second = _item("b", "HK Raises No.8 Typhoon Signal")

    same_llm = ScriptedLLM(" same\n")
    assert await LLMPairVerifier(same_llm).same_story(first, second) is True
    assert same_llm.kwargs["temperature"] == 0.0
    assert same_llm.kwargs["max_tokens"] == 10

    assert await LLMPairVerifier(ScriptedLLM("DIFFERENT")).same_story(first, second) is False
