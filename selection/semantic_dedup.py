"""Cross-source semantic deduplication: embedding similarity + union-find clustering."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from core import CandidateItem, DeduplicationCluster
from intelligence.llm import BaseLLM, Message
from processing.embedder import BaseEmbedder
from selection.lexical_dedup import RankKey, newest_first, pick_representative, richest_then_newest
from selection.normalize import word_tokens


logger = logging.getLogger(__name__)

_EMBED_WEIGHT = 0.7
_TITLE_WEIGHT = 0.3
VERIFY_LOW = 0.70
VERIFY_HIGH = 0.85
MAX_VERIFICATIONS = 10


class PairVerifier(Protocol):
    """Second opinion for borderline pairs; True means same underlying story."""

    async def same_story(self, first: CandidateItem, second: CandidateItem) -> bool:
        ...


class LLMPairVerifier:
    """Asks a chat LLM whether two headlines report the same event."""

    def __init__(self, llm: BaseLLM, timeout_sec: float = 15.0):
        self.llm = llm
        self.timeout_sec = float(timeout_sec)

    async def same_story(self, first: CandidateItem, second: CandidateItem) -> bool:
        prompt = (
            "Are these two news articles about the same event or story?\n\n"
            f"Article 1: {first.title}\n{(first.summary or first.content)[:300]}\n\n"
            f"Article 2: {second.title}\n{(second.summary or second.content)[:300]}\n\n"
            "Answer with exactly one word: SAME or DIFFERENT."
        )
        response = await asyncio.wait_for(
            self.llm.acomplete([Message.user(prompt)], temperature=0.0, max_tokens=10),
            timeout=self.timeout_sec,
        )
        return response.content.strip().upper().startswith("SAME")


def embedding_text(item: CandidateItem) -> str:
    body = item.summary or (item.content or "")[:200]
    return re.sub(r"\s+", " ", f"{item.title} {body}".lower()).strip()


def title_jaccard(first: str, second: str) -> float:
    a = set(word_tokens(first))
    b = set(word_tokens(second))
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def pair_score(cosine: float, jaccard: float) -> float:
    return _EMBED_WEIGHT * cosine + _TITLE_WEIGHT * jaccard


class _UnionFind:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))

    def find(self, idx: int) -> int:
        while self.parent[idx] != idx:
            self.parent[idx] = self.parent[self.parent[idx]]
            idx = self.parent[idx]
        return idx

    def union(self, a: int, b: int) -> bool:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        if rb < ra:
            ra, rb = rb, ra
        self.parent[rb] = ra
        return True


@dataclass(frozen=True)
class SemanticDedupResult:
    items: List[CandidateItem]
    clusters: List[DeduplicationCluster]
    degraded: bool = False
    error: Optional[str] = None
    verifications: int = 0
    input_count: int = 0

    @property
    def duplicates_removed(self) -> int:
        return self.input_count - len(self.items)

    def cluster_for(self, item_id: str) -> Optional[DeduplicationCluster]:
        for cluster in self.clusters:
            if cluster.representative.id == item_id:
                return cluster
        return None

    def stats(self) -> Dict[str, Any]:
        sizes = [cluster.size for cluster in self.clusters]
        return {
            "original_count": self.input_count,
            "unique_stories": len(self.items),
            "duplicates_removed": self.duplicates_removed,
            "average_cluster_size": round(sum(sizes) / len(sizes), 3) if sizes else 0.0,
            "largest_cluster": max(sizes, default=0),
            "sources_represented": sorted({item.source for item in self.items}),
        }


def singleton_clusters(items: Sequence[CandidateItem]) -> List[DeduplicationCluster]:
    ordered = sorted(items, key=newest_first, reverse=True)
    return [
        DeduplicationCluster(
            cluster_id=f"cluster_{idx}_{item.id[:8]}",
            members=[item],
            representative=item,
            average_similarity=1.0,
        )
        for idx, item in enumerate(ordered, start=1)
    ]


def _passthrough(items: Sequence[CandidateItem], error: str) -> SemanticDedupResult:
    clusters = singleton_clusters(items)
    return SemanticDedupResult(
        items=[cluster.representative for cluster in clusters],
        clusters=clusters,
        degraded=True,
        error=error,
        input_count=len(items),
    )


def _similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    unit = vectors / np.clip(norms, 1e-12, None)
    return np.clip(unit @ unit.T, -1.0, 1.0)


async def dedup_semantic(
    items: Sequence[CandidateItem],
    embedder: BaseEmbedder,
    *,
    window_hours: float = 24.0,
    link_threshold: float = 0.5,
    verifier: Optional[PairVerifier] = None,
    max_verifications: int = MAX_VERIFICATIONS,
    rank_key: RankKey = richest_then_newest,
) -> SemanticDedupResult:
    """
    Cluster candidates that retell the same story and keep one per cluster.

    Pairs are compared only when their ingestion times are within
    ``window_hours``. A pair links when ``0.7*cosine + 0.3*title_jaccard``
    exceeds ``link_threshold``. Unlinked pairs with cosine in the borderline
    band are offered to ``verifier`` (bounded by ``max_verifications``).
    Any embedder failure returns the input as singleton clusters, marked degraded.
    """
    items = list(items)
    if len(items) < 2:
        clusters = singleton_clusters(items)
        return SemanticDedupResult(
            items=[cluster.representative for cluster in clusters],
            clusters=clusters,
            input_count=len(items),
        )

    try:
        vectors = np.asarray(await embedder.aembed([embedding_text(item) for item in items]), dtype=float)
    except Exception as exc:
        logger.warning("semantic_dedup_degraded reason=embedder_error error=%s", exc)
        return _passthrough(items, f"embedder_error: {exc}")
    if vectors.ndim != 2 or vectors.shape[0] != len(items):
        logger.warning("semantic_dedup_degraded reason=bad_shape shape=%s", getattr(vectors, "shape", None))
        return _passthrough(items, f"embedder returned shape {vectors.shape}")

    sims = _similarity_matrix(vectors)
    uf = _UnionFind(len(items))
    linked: List[Tuple[int, int, float]] = []
    borderline: List[Tuple[float, int, int, float]] = []

    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            gap = abs((items[i].created_at - items[j].created_at).total_seconds()) / 3600.0
            if gap > window_hours:
                continue
            cosine = float(sims[i, j])
            score = pair_score(cosine, title_jaccard(items[i].title, items[j].title))
            if score > link_threshold:
                uf.union(i, j)
                linked.append((i, j, score))
            elif VERIFY_LOW <= cosine < VERIFY_HIGH:
                borderline.append((cosine, i, j, score))

    verifications = 0
    if verifier is not None and borderline:
        borderline.sort(key=lambda row: (-row[0], row[1], row[2]))
        for cosine, i, j, score in borderline:
            if verifications >= max_verifications:
                break
            if uf.find(i) == uf.find(j):
                continue
            verifications += 1
            try:
                same = await verifier.same_story(items[i], items[j])
            except Exception as exc:
                logger.warning("pair_verify_failed a=%s b=%s error=%s", items[i].id, items[j].id, exc)
                same = False
            if same:
                uf.union(i, j)
                linked.append((i, j, score))
                logger.info("pair_verify_merge a=%s b=%s cosine=%.3f", items[i].id, items[j].id, cosine)

    components: Dict[int, List[int]] = {}
    for idx in range(len(items)):
        components.setdefault(uf.find(idx), []).append(idx)
    pair_scores: Dict[int, List[float]] = {}
    for i, _j, score in linked:
        pair_scores.setdefault(uf.find(i), []).append(score)

    drafts = []
    for root, member_idx in components.items():
        members = [items[idx] for idx in member_idx]
        representative = pick_representative(members, rank_key)
        scores = pair_scores.get(root) or []
        average = sum(scores) / len(scores) if scores else 1.0
        drafts.append((representative, members, average))
    drafts.sort(key=lambda row: newest_first(row[0]), reverse=True)

    clusters = [
        DeduplicationCluster(
            cluster_id=f"cluster_{idx}_{representative.id[:8]}",
            members=sorted(members, key=rank_key, reverse=True),
            representative=representative,
            average_similarity=round(max(0.0, min(1.0, average)), 4),
        )
        for idx, (representative, members, average) in enumerate(drafts, start=1)
    ]
    result = SemanticDedupResult(
        items=[cluster.representative for cluster in clusters],
        clusters=clusters,
        verifications=verifications,
        input_count=len(items),
    )
    for cluster in clusters:
        if cluster.is_duplicate_group:
            logger.info(
                "semantic_cluster id=%s kept=%s size=%s sources=%s",
                cluster.cluster_id,
                cluster.representative.id,
                cluster.size,
                ",".join(member.source for member in cluster.members),
            )
    logger.info(
        "semantic_dedup input=%s unique=%s removed=%s verifications=%s",
        len(items),
        len(result.items),
        result.duplicates_removed,
        verifications,
    )
    return result
