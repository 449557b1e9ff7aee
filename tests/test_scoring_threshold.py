from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from core import CandidateItem
from selection.scoring import content_score, quality_score, recency_score, score_candidates, source_score
from selection.threshold import compute_threshold


NOW = datetime(2025, 7, 20, 12, 0, tzinfo=timezone.utc)


def _item(item_id: str, *, source: str = "HKFP", chars: int = 2000, minutes_ago: int = 30) -> CandidateItem:
    return CandidateItem(
        id=item_id,
        title=f"Headline {item_id}",
        content="x" * chars,
        url=f"https://example.com/{item_id}",
        source=source,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


def test_recency_buckets() -> None:
    assert recency_score(0.5) == 100
    assert recency_score(1) == 90
    assert recency_score(2.9) == 90
    assert recency_score(3) == 80
    assert recency_score(11.9) == 70
    assert recency_score(23.9) == 60
    assert recency_score(24) == 50


def test_content_buckets() -> None:
    assert content_score(2000) == 100
    assert content_score(1999) == 90
    assert content_score(500) == 80
    assert content_score(200) == 70
    assert content_score(100) == 60
    assert content_score(50) == 50
    assert content_score(49) == 20


def test_source_reputation_defaults_to_fifty() -> None:
    assert source_score("HKFP") == 100.0
    assert source_score("unknown-blog") == 50.0


def test_quality_score_combines_weights() -> None:
    assert quality_score(_item("a"), NOW) == 100.0
    # recency 80, content 70, source 50 -> 24 + 28 + 15
    assert quality_score(_item("b", source="unknown-blog", chars=300, minutes_ago=4 * 60), NOW) == pytest.approx(67.0)


def test_score_candidates_sorted_highest_first() -> None:
    items = [
        _item("low", source="am730", chars=60, minutes_ago=600),
        _item("high", source="HKFP"),
        _item("mid", source="RTHK", chars=800),
    ]

    ranked = score_candidates(items, NOW)

    assert [row.item.id for row in ranked] == ["high", "mid", "low"]
    assert all(0.0 <= row.quality_score <= 100.0 for row in ranked)


def test_threshold_fixed_for_small_samples_or_disabled() -> None:
    assert compute_threshold([]).threshold == 80.0
    assert compute_threshold([95.0, 90.0]).method == "fixed"
    disabled = compute_threshold([95.0, 90.0, 85.0, 70.0], enabled=False)
    assert disabled.threshold == 80.0
    assert disabled.method == "fixed"


def test_threshold_from_top_thirty_percent_without_median_penalty() -> None:
    scores = [95, 93, 91, 90, 88, 86, 84, 82, 80, 78, 72, 71, 70, 68, 66, 65, 64, 62, 61, 60]

    decision = compute_threshold(scores)

    assert decision.method == "dynamic"
    assert decision.percentile_score == 84.0
    assert decision.median == 72.0
    assert decision.threshold == 84.0


def test_threshold_is_clamped() -> None:
    assert compute_threshold([95.0] * 10).threshold == 85.0
    assert compute_threshold([50.0] * 10).threshold == 65.0


def test_low_median_lowers_threshold() -> None:
    decision = compute_threshold([90, 90, 90, 80, 60, 60, 60, 60, 60, 60])

    assert decision.percentile_score == 80.0
    assert decision.median == 60.0
    assert decision.threshold == 70.0


def test_threshold_is_monotone_in_scores() -> None:
    base = [60.0, 65.0, 70.0, 75.0, 80.0, 85.0, 90.0]
    lifted = [score + 5.0 for score in base]

    assert compute_threshold(lifted).threshold >= compute_threshold(base).threshold
    assert 65.0 <= compute_threshold(base).threshold <= 85.0
