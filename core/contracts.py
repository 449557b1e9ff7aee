"""Canonical data contracts for the candidate selection pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SelectionMethod = Literal["perplexity_ai", "fallback"]
CycleState = Literal["completed", "no_candidates", "cancelled"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CandidateItem(BaseModel):
    """One harvested content item eligible for this cycle's selection."""

    id: str
    title: str
    summary: Optional[str] = None
    content: str = ""
    url: str
    source: str
    category: str = "general"
    published_at: Optional[datetime] = None
    created_at: datetime
    image_url: Optional[str] = None
    content_length: int = 0
    has_summary: bool = False
    has_image: bool = False
    tier: Optional[str] = None
    tier_weight: float = 0.0

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "general"

    @field_validator("published_at", "created_at", mode="after")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="after")
    def _derive_fields(self) -> "CandidateItem":
        self.content_length = len(self.content or "")
        self.has_summary = bool(self.summary and len(self.summary) > 50)
        self.has_image = bool(self.image_url)
        return self


class TierConfig(BaseModel):
    """Immutable per-tier harvesting policy."""

    model_config = ConfigDict(frozen=True)

    name: str
    sources: FrozenSet[str]
    quota: int = Field(gt=0)
    max_age_hours: int = Field(gt=0)
    min_content_chars: int = Field(default=0, ge=0)
    weight: float = 0.0


class TierTable(BaseModel):
    """Validated set of tiers; a source belongs to at most one tier."""

    model_config = ConfigDict(frozen=True)

    tiers: List[TierConfig]

    @model_validator(mode="after")
    def _disjoint_sources(self) -> "TierTable":
        owner: Dict[str, str] = {}
        for tier in self.tiers:
            for source in tier.sources:
                if source in owner:
                    raise ValueError(f"source {source!r} is in tiers {owner[source]!r} and {tier.name!r}")
                owner[source] = tier.name
        return self

    def all_sources(self) -> List[str]:
        return sorted({source for tier in self.tiers for source in tier.sources})


class DeduplicationCluster(BaseModel):
    """Group of candidates judged to report the same story."""

    cluster_id: str
    members: List[CandidateItem]
    representative: CandidateItem
    average_similarity: float = 1.0

    @model_validator(mode="after")
    def _representative_is_member(self) -> "DeduplicationCluster":
        if not any(member.id == self.representative.id for member in self.members):
            raise ValueError("representative must be one of the cluster members")
        return self

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_duplicate_group(self) -> bool:
        return self.size > 1

    @property
    def absorbed_sources(self) -> List[str]:
        return [member.source for member in self.members if member.id != self.representative.id]

    def provenance(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "cluster_size": self.size,
            "sources_in_cluster": [member.source for member in self.members],
            "absorbed_sources": self.absorbed_sources,
            "average_similarity": round(float(self.average_similarity), 4),
        }


class ScoredCandidate(BaseModel):
    """Candidate plus its deterministic quality score."""

    item: CandidateItem
    quality_score: float = Field(ge=0.0, le=100.0)


class ShortlistEntry(BaseModel):
    """Entry of the bounded list sent to the ranking oracle."""

    shortlist_id: str
    index: int
    item: CandidateItem
    quality_score: float = 0.0


class OracleSelection(BaseModel):
    """Validated ranking-oracle verdict for one shortlist entry."""

    shortlist_index: int
    shortlist_id: str
    impact: int = Field(ge=1, le=5)
    novelty: int = Field(ge=1, le=5)
    depth: int = Field(ge=1, le=5)
    diversity: int = Field(ge=1, le=5)
    underserved: int = Field(ge=1, le=5)
    asserted_score: float
    composite_score: float = Field(ge=0.0, le=100.0)

    def breakdown(self) -> str:
        return (
            f"I:{self.impact} N:{self.novelty} D:{self.depth} "
            f"S:{self.diversity} U:{self.underserved}"
        )


class SelectedArticle(BaseModel):
    """Final pick of a cycle, ready for commit."""

    item: CandidateItem
    selection_reason: str
    priority_score: float
    session_id: str
    method: SelectionMethod
    shortlist_id: Optional[str] = None
    cluster_info: Optional[Dict[str, Any]] = None
    ai_category: Optional[str] = None
    category_confidence: Optional[int] = None


class RecentTopicRecord(BaseModel):
    """Projection of an already-promoted item used for similarity checks."""

    model_config = ConfigDict(frozen=True)

    title: str
    summary: Optional[str] = None
    created_at: datetime
    category: Optional[str] = None


class CommitFailure(BaseModel):
    article_id: str
    error: str


class CycleCounts(BaseModel):
    harvested: int = 0
    after_lexical: int = 0
    after_semantic: int = 0
    after_topic_filter: int = 0
    shortlisted: int = 0
    committed: int = 0
    skipped: int = 0


class CycleResult(BaseModel):
    """Structured outcome of one selection cycle."""

    session_id: str
    status: CycleState = "completed"
    selected: List[SelectedArticle] = Field(default_factory=list)
    method: Optional[SelectionMethod] = None
    threshold: Optional[float] = None
    threshold_method: Optional[str] = None
    counts: CycleCounts = Field(default_factory=CycleCounts)
    degradations: List[str] = Field(default_factory=list)
    commit_failures: List[CommitFailure] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
