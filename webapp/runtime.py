"""Shared runtime singletons for web/CLI entrypoints."""

from __future__ import annotations

from functools import lru_cache
import logging

from config import get_settings
from intelligence.llm import get_llm
from orchestrator import CycleHistoryStore, SelectionOrchestrator
from processing.embedder import get_embedder
from selection.categorizer import LLMCategorizer
from selection.engine import EngineConfig, SelectionEngine
from selection.oracle import LLMRankingOracle
from selection.semantic_dedup import LLMPairVerifier
from storage import get_article_store


logger = logging.getLogger(__name__)


def build_engine_config() -> EngineConfig:
    return EngineConfig.from_settings(get_settings())


def build_engine(config: EngineConfig) -> SelectionEngine:
    """Wire store, oracle and optional collaborators from settings."""
    settings = get_settings()
    store = get_article_store()
    oracle = LLMRankingOracle(get_llm(), timeout_sec=config.oracle_timeout_sec)

    embedder = None
    pair_verifier = None
    if config.semantic_dedup:
        embedder = get_embedder()
        pair_verifier = LLMPairVerifier(get_llm(provider=settings.oracle.categorizer_provider, model=settings.oracle.categorizer_model))

    categorizer = None
    if config.categorization:
        categorizer = LLMCategorizer(
            get_llm(provider=settings.oracle.categorizer_provider, model=settings.oracle.categorizer_model),
            timeout_sec=config.oracle_timeout_sec,
        )

    logger.info(
        "engine_wired store=%s oracle=%s semantic=%s categorization=%s",
        settings.store.backend,
        oracle.llm.provider,
        embedder is not None,
        categorizer is not None,
    )
    return SelectionEngine(
        store,
        oracle,
        embedder=embedder,
        categorizer=categorizer,
        pair_verifier=pair_verifier,
    )


@lru_cache()
def get_orchestrator() -> SelectionOrchestrator:
    config = build_engine_config()
    return SelectionOrchestrator(build_engine(config), config=config, history=CycleHistoryStore())


async def close_runtime() -> None:
    """Release LLM clients held by the cached orchestrator, if one was built."""
    if get_orchestrator.cache_info().currsize == 0:
        return
    await get_orchestrator().aclose()
    get_orchestrator.cache_clear()
