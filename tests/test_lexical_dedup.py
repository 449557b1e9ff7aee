from __future__ import annotations

from datetime import datetime, timedelta, timezone
from itertools import permutations

from core import CandidateItem
from selection.lexical_dedup import dedup_lexical, pick_representative


NOW = datetime(2025, 7, 20, 12, 0, tzinfo=timezone.utc)


def _item(
    item_id: str,
    title: str,
    *,
    source: str = "HKFP",
    chars: int = 500,
    minutes_ago: int = 10,
    url: str | None = None,
) -> CandidateItem:
    return CandidateItem(
        id=item_id,
        title=title,
        content="x" * chars,
        url=url or f"https://example.com/{item_id}",
        source=source,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


def test_same_title_keeps_richest_representative() -> None:
    items = [
        _item("a1", "Typhoon Signal No. 8 Raised", source="HKFP", chars=600),
        _item("a2", "typhoon signal no 8 raised!", source="RTHK", chars=1500),
        _item("b1", "Legco passes budget", source="scmp", chars=900),
    ]

    result = dedup_lexical(items)

    assert sorted(item.id for item in result.items) == ["a2", "b1"]
    assert result.removed == [("a1", "a2")]
    assert result.removed_count == 1


def test_result_is_independent_of_input_order() -> None:
    items = [
        _item("a1", "Typhoon Signal No. 8 Raised", chars=600, minutes_ago=30),
        _item("a2", "Typhoon signal no. 8 raised", chars=600, minutes_ago=5),
        _item("b1", "Legco passes budget", chars=900, minutes_ago=20),
        _item("c1", "Different title same page", url="https://www.example.com/b1/"),
    ]
    expected = [item.id for item in dedup_lexical(items).items]

    for ordering in permutations(items):
        assert [item.id for item in dedup_lexical(list(ordering)).items] == expected


def test_equal_content_tie_goes_to_most_recent() -> None:
    older = _item("old", "Same story", chars=800, minutes_ago=60)
    newer = _item("new", "Same story", chars=800, minutes_ago=5)

    assert pick_representative([older, newer]).id == "new"
    assert [item.id for item in dedup_lexical([older, newer]).items] == ["new"]


def test_url_pass_collapses_same_page_with_different_titles() -> None:
    items = [
        _item("u1", "Government unveils housing plan", url="https://www.scmp.com/news/plan/", chars=400),
        _item("u2", "Housing plan: what you need to know", url="http://scmp.com/news/plan?ref=home", chars=1200),
    ]

    result = dedup_lexical(items)

    assert [item.id for item in result.items] == ["u2"]
    assert result.removed == [("u1", "u2")]


def test_output_is_newest_first_and_duplicate_ids_collapse() -> None:
    items = [
        _item("x", "Story one", minutes_ago=50),
        _item("y", "Story two", minutes_ago=5),
        _item("x", "Story one", minutes_ago=50, chars=2000),
    ]

    result = dedup_lexical(items)

    assert [item.id for item in result.items] == ["y", "x"]
    assert next(item for item in result.items if item.id == "x").content_length == 2000
