"""Core contracts and shared types for the selection engine."""

from .contracts import (
    CandidateItem,
    CommitFailure,
    CycleCounts,
    CycleResult,
    DeduplicationCluster,
    OracleSelection,
    RecentTopicRecord,
    ScoredCandidate,
    SelectedArticle,
    SelectionMethod,
    ShortlistEntry,
    TierConfig,
    TierTable,
)

__all__ = [
    "CandidateItem",
    "CommitFailure",
    "CycleCounts",
    "CycleResult",
    "DeduplicationCluster",
    "OracleSelection",
    "RecentTopicRecord",
    "ScoredCandidate",
    "SelectedArticle",
    "SelectionMethod",
    "ShortlistEntry",
    "TierConfig",
    "TierTable",
]
