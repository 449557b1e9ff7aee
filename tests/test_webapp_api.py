"""Tests for the selection cycle HTTP API."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import importlib

from fastapi.testclient import TestClient
from tenacity import wait_none

from orchestrator import CycleHistoryStore, SelectionOrchestrator
from selection.engine import EngineConfig, SelectionEngine
from storage import InMemoryArticleStore, StoredArticle
from utils.exceptions import CycleInProgressError, OracleError

webapp_module = importlib.import_module("webapp.app")


class UnreachableOracle:
    async def score(self, shortlist, context):
        raise OracleError("ranking oracle call failed")


class BusyOrchestrator:
    config = EngineConfig()

    async def run_cycle(self, count, *, config=None, stop_event=None, trigger="manual", now=None):
        raise CycleInProgressError(cycle_id="selection_1_abcdef")


def _row(row_id: str, *, minutes_ago: int = 30, **fields) -> StoredArticle:
    data = {
        "id": row_id,
        "title": f"Hong Kong story {row_id}",
        "content": "x" * 600,
        "url": f"https://example.com/{row_id}",
        "source": "HKFP",
        "created_at": datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    }
    data.update(fields)
    return StoredArticle(**data)


def _client(monkeypatch, rows=None) -> tuple:
    store = InMemoryArticleStore(rows or [])
    engine = SelectionEngine(store, UnreachableOracle(), retry_wait=wait_none())
    orchestrator = SelectionOrchestrator(engine, config=EngineConfig(semantic_dedup=False), history=CycleHistoryStore())
    monkeypatch.setattr(webapp_module, "get_orchestrator", lambda: orchestrator)
    return TestClient(webapp_module.app), store


def test_health(monkeypatch) -> None:
    client, _store = _client(monkeypatch)

    payload = client.get("/api/health").json()

    assert payload["ok"] is True


def test_trigger_cycle_commits_and_is_listed(monkeypatch) -> None:
    client, store = _client(monkeypatch, [_row("a", minutes_ago=5), _row("b", minutes_ago=50)])

    response = client.post("/api/cycles", json={"count": 1, "trigger": "test-suite"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["result"]["method"] == "fallback"
    assert [article["item"]["id"] for article in body["result"]["selected"]] == ["a"]
    assert store.get("a").selected_for_enhancement is True

    detail = client.get(f"/api/cycles/{body['cycle_id']}").json()
    assert detail["status"]["state"] == "completed"
    assert detail["status"]["trigger"] == "test-suite"
    assert [event["event"] for event in detail["events"]] == ["started", "completed"]

    listing = client.get("/api/cycles").json()
    assert listing["running"] is False
    assert [cycle["cycle_id"] for cycle in listing["cycles"]] == [body["cycle_id"]]


def test_trigger_cycle_without_candidates(monkeypatch) -> None:
    client, _store = _client(monkeypatch)

    body = client.post("/api/cycles", json={"count": 2}).json()

    assert body["status"] == "no_candidates"
    assert body["result"]["selected"] == []


def test_trigger_cycle_rejects_invalid_count(monkeypatch) -> None:
    client, _store = _client(monkeypatch)

    assert client.post("/api/cycles", json={"count": 0}).status_code == 422
    assert client.post("/api/cycles", json={"count": 11}).status_code == 422


def test_trigger_cycle_conflict_when_busy(monkeypatch) -> None:
    monkeypatch.setattr(webapp_module, "get_orchestrator", lambda: BusyOrchestrator())
    client = TestClient(webapp_module.app)

    response = client.post("/api/cycles", json={"count": 1, "flexible_count": True})

    assert response.status_code == 409
    assert response.json()["detail"]["cycle_id"] == "selection_1_abcdef"


def test_unknown_cycle_is_404(monkeypatch) -> None:
    client, _store = _client(monkeypatch)

    response = client.get("/api/cycles/selection_0_000000")

    assert response.status_code == 404


def test_statistics_and_cleanup_endpoints(monkeypatch) -> None:
    stuck = _row(
        "stuck",
        minutes_ago=9 * 60,
        selected_for_enhancement=True,
        selection_metadata={"selected_at": (datetime.now(timezone.utc) - timedelta(hours=7)).isoformat()},
    )
    client, store = _client(monkeypatch, [stuck, _row("open")])

    stats = client.get("/api/statistics", params={"hours": 12}).json()
    assert stats["total_candidates"] == 1
    assert stats["window_hours"] == 12

    cleanup = client.post("/api/maintenance/cleanup-stale", params={"hours": 4}).json()
    assert cleanup["reset_ids"] == ["stuck"]
    assert cleanup["reason"] == "cleanup_stuck_selections_cron"
    assert store.get("stuck").selected_for_enhancement is False


def test_shutdown_releases_runtime_clients(monkeypatch) -> None:
    _client(monkeypatch)
    calls = []

    async def _close_runtime() -> None:
        calls.append("closed")

    monkeypatch.setattr(webapp_module, "close_runtime", _close_runtime)

    with TestClient(webapp_module.app) as client:
        assert client.get("/api/health").status_code == 200
        assert calls == []

    assert calls == ["closed"]
