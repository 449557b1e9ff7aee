from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

import pytest

from selection.tiers import DEFAULT_TIERS, load_tier_table, tier_for_source, tier_summary
from storage import InMemoryArticleStore, StoredArticle, get_article_store
from utils.exceptions import ConfigurationError, StorageError


NOW = datetime.now(timezone.utc)


def _row(row_id: str, *, source: str = "HKFP", minutes_ago: int = 30, **fields) -> StoredArticle:
    data = {
        "id": row_id,
        "title": f"Hong Kong story {row_id}",
        "content": "x" * 600,
        "url": f"https://example.com/{row_id}",
        "source": source,
        "created_at": NOW - timedelta(minutes=minutes_ago),
    }
    data.update(fields)
    return StoredArticle(**data)


def test_default_tiers() -> None:
    assert [tier.name for tier in DEFAULT_TIERS.tiers] == ["premium", "mainstream", "local"]
    assert tier_for_source(DEFAULT_TIERS, "RTHK").name == "mainstream"
    assert tier_for_source(DEFAULT_TIERS, "unknown") is None
    assert tier_summary(DEFAULT_TIERS)["local"]["quota"] == 12
    assert "HKFP" in DEFAULT_TIERS.all_sources()


def test_tier_override_from_json() -> None:
    table = load_tier_table(
        json.dumps(
            {
                "premium": {"sources": ["HKFP"], "quota": 2, "max_age_hours": 12, "min_content_chars": 200, "weight": 100},
                "local": {"sources": ["HK01"], "quota": 2, "max_age_hours": 3},
            }
        )
    )

    assert [tier.name for tier in table.tiers] == ["premium", "local"]
    assert table.tiers[1].min_content_chars == 0
    assert load_tier_table(None) is DEFAULT_TIERS
    assert load_tier_table("  ") is DEFAULT_TIERS


@pytest.mark.parametrize(
    "payload",
    [
        "{not json",
        "[]",
        json.dumps({"premium": {"sources": ["HKFP"], "quota": 0, "max_age_hours": 12}}),
        json.dumps(
            {
                "a": {"sources": ["HKFP"], "quota": 1, "max_age_hours": 12},
                "b": {"sources": ["HKFP"], "quota": 1, "max_age_hours": 6},
            }
        ),
    ],
)
def test_invalid_tier_override_is_configuration_error(payload: str) -> None:
    with pytest.raises(ConfigurationError):
        load_tier_table(payload)


def test_store_url_is_unique() -> None:
    store = InMemoryArticleStore([_row("a")])

    with pytest.raises(StorageError):
        store.upsert(_row("b", url="https://example.com/a"))


@pytest.mark.asyncio
async def test_fetch_candidates_skips_selected_enhanced_and_empty_rows() -> None:
    store = InMemoryArticleStore(
        [
            _row("open"),
            _row("selected", selected_for_enhancement=True),
            _row("enhanced", is_enhanced=True),
            _row("empty", content=""),
            _row("other_source", source="RTHK"),
            _row("too_old", minutes_ago=600),
        ]
    )

    items = await store.fetch_candidates(["HKFP"], NOW - timedelta(hours=6), 10)

    assert [item.id for item in items] == ["open"]


@pytest.mark.asyncio
async def test_reset_stale_selections_respects_limit_and_records_reason() -> None:
    rows = [
        _row(
            f"s{idx}",
            selected_for_enhancement=True,
            selection_metadata={"selected_at": (NOW - timedelta(hours=6 + idx)).isoformat()},
        )
        for idx in range(3)
    ]
    store = InMemoryArticleStore(rows)

    reset = await store.reset_stale_selections(NOW - timedelta(hours=4), limit=2, reason="cleanup_stuck_selections_cron")

    assert reset == ["s2", "s1"]
    assert store.get("s2").selection_metadata["reset_reason"] == "cleanup_stuck_selections_cron"
    assert store.get("s0").selected_for_enhancement is True


@pytest.mark.asyncio
async def test_selection_statistics_counts_open_candidates() -> None:
    store = InMemoryArticleStore(
        [
            _row("a"),
            _row("b", source="RTHK"),
            _row("c", minutes_ago=60 * 30),
            _row("d", selected_for_enhancement=True),
        ]
    )

    stats = await store.selection_statistics(NOW - timedelta(hours=24))

    assert stats["total_candidates"] == 3
    assert stats["recent_candidates"] == 2
    assert stats["source_breakdown"] == {"HKFP": 1, "RTHK": 1}


def test_store_factory_requires_dsn_for_postgres(monkeypatch) -> None:
    from config.settings import get_settings

    monkeypatch.delenv("STORE_PG_DSN", raising=False)
    monkeypatch.setenv("STORE_BACKEND", "postgres")
    get_settings.cache_clear()
    try:
        with pytest.raises(ConfigurationError):
            get_article_store()
        assert isinstance(get_article_store("memory"), InMemoryArticleStore)
    finally:
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        get_settings.cache_clear()
