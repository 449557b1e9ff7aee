"""
Selection Module
候选稿件选择与跨来源去重
"""
from .engine import EngineConfig, SelectionEngine, new_session_id
from .harvester import HarvestResult, harvest
from .lexical_dedup import dedup_lexical
from .semantic_dedup import LLMPairVerifier, SemanticDedupResult, dedup_semantic
from .topic_filter import filter_recent_topics
from .scoring import quality_score, score_candidates
from .threshold import ThresholdDecision, compute_threshold
from .oracle import LLMRankingOracle, OracleContext, build_shortlist, select_with_oracle
from .fallback import fallback_select
from .categorizer import LLMCategorizer, apply_categories
from .committer import SelectionCommitter
from .tiers import DEFAULT_TIERS, load_tier_table

__all__ = [
    "EngineConfig",
    "SelectionEngine",
    "new_session_id",
    "HarvestResult",
    "harvest",
    "dedup_lexical",
    "LLMPairVerifier",
    "SemanticDedupResult",
    "dedup_semantic",
    "filter_recent_topics",
    "quality_score",
    "score_candidates",
    "ThresholdDecision",
    "compute_threshold",
    "LLMRankingOracle",
    "OracleContext",
    "build_shortlist",
    "select_with_oracle",
    "fallback_select",
    "LLMCategorizer",
    "apply_categories",
    "SelectionCommitter",
    "DEFAULT_TIERS",
    "load_tier_table",
]
