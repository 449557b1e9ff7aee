"""Article store boundary used by the selection engine, plus an in-memory backend."""

from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from core import CandidateItem, RecentTopicRecord
from utils.exceptions import StorageError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class StoredArticle(BaseModel):
    """Row shape of the content table as seen by this engine."""

    id: str
    title: str
    summary: Optional[str] = None
    content: Optional[str] = None
    url: str
    source: str
    category: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    image_url: Optional[str] = None
    is_enhanced: bool = False
    selected_for_enhancement: bool = False
    selection_metadata: Optional[Dict[str, Any]] = None
    enhancement_metadata: Optional[Dict[str, Any]] = None

    def to_candidate(self) -> CandidateItem:
        return CandidateItem(
            id=self.id,
            title=self.title,
            summary=self.summary,
            content=self.content or "",
            url=self.url,
            source=self.source,
            category=self.category or "general",
            published_at=self.published_at,
            created_at=self.created_at,
            image_url=self.image_url,
        )

    def selected_at(self) -> Optional[datetime]:
        return _parse_ts((self.selection_metadata or {}).get("selected_at"))


class ArticleStore(Protocol):
    """Persistent store operations issued by the selection engine."""

    async def fetch_candidates(self, sources: Sequence[str], since: datetime, limit: int) -> List[CandidateItem]:
        ...

    async def reset_stale_selections(
        self,
        older_than: datetime,
        *,
        sources: Optional[Sequence[str]] = None,
        limit: int = 20,
        reason: str = "stale_selection_reset",
    ) -> List[str]:
        ...

    async def fetch_recent_selected_titles(self, since: datetime, limit: int = 100) -> List[str]:
        ...

    async def fetch_recent_topics(self, since: datetime, limit: int = 40) -> List[RecentTopicRecord]:
        ...

    async def mark_selected(
        self,
        article_id: str,
        metadata: Dict[str, Any],
        *,
        category: Optional[str] = None,
    ) -> bool:
        ...

    async def selection_statistics(self, since: datetime, sources: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        ...


class InMemoryArticleStore:
    """Thread-safe in-memory content table for tests and local runs."""

    def __init__(self, rows: Optional[Iterable[StoredArticle]] = None) -> None:
        self._rows: Dict[str, StoredArticle] = {}
        self._lock = Lock()
        for row in list(rows or []):
            self.upsert(row)

    def upsert(self, row: StoredArticle) -> None:
        with self._lock:
            for existing in self._rows.values():
                if existing.url == row.url and existing.id != row.id:
                    raise StorageError("url must be unique", {"url": row.url, "id": existing.id})
            self._rows[row.id] = row.model_copy(deep=True)

    def get(self, article_id: str) -> Optional[StoredArticle]:
        with self._lock:
            row = self._rows.get(article_id)
            return row.model_copy(deep=True) if row else None

    def mark_enhanced(self, article_id: str) -> bool:
        with self._lock:
            row = self._rows.get(article_id)
            if not row:
                return False
            row.is_enhanced = True
            return True

    async def fetch_candidates(self, sources: Sequence[str], since: datetime, limit: int) -> List[CandidateItem]:
        wanted = set(sources)
        with self._lock:
            rows = [
                row
                for row in self._rows.values()
                if row.source in wanted
                and not row.selected_for_enhancement
                and not row.is_enhanced
                and row.created_at >= since
                and (row.content or "").strip()
                and (row.enhancement_metadata or {}).get("source_article_status") is None
            ]
            rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
            return [row.to_candidate() for row in rows[: max(0, int(limit))]]

    async def reset_stale_selections(
        self,
        older_than: datetime,
        *,
        sources: Optional[Sequence[str]] = None,
        limit: int = 20,
        reason: str = "stale_selection_reset",
    ) -> List[str]:
        wanted = set(sources) if sources is not None else None
        now = _utcnow()
        reset_ids: List[str] = []
        with self._lock:
            stale = []
            for row in self._rows.values():
                if not row.selected_for_enhancement or row.is_enhanced:
                    continue
                if wanted is not None and row.source not in wanted:
                    continue
                selected_at = row.selected_at()
                if selected_at is None or selected_at >= older_than:
                    continue
                stale.append((selected_at, row))
            stale.sort(key=lambda pair: pair[0])
            for _, row in stale[: max(0, int(limit))]:
                row.selected_for_enhancement = False
                row.selection_metadata = {
                    **dict(row.selection_metadata or {}),
                    "reset_at": now.isoformat(),
                    "reset_reason": reason,
                    "previously_stuck": True,
                }
                reset_ids.append(row.id)
        return reset_ids

    async def fetch_recent_selected_titles(self, since: datetime, limit: int = 100) -> List[str]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.selected_for_enhancement and row.created_at >= since]
            rows.sort(key=lambda row: row.created_at, reverse=True)
            return [row.title for row in rows[:limit]]

    async def fetch_recent_topics(self, since: datetime, limit: int = 40) -> List[RecentTopicRecord]:
        with self._lock:
            rows = [row for row in self._rows.values() if row.is_enhanced and row.created_at >= since]
            rows.sort(key=lambda row: row.created_at, reverse=True)
            return [
                RecentTopicRecord(
                    title=row.title,
                    summary=row.summary,
                    created_at=row.created_at,
                    category=row.category,
                )
                for row in rows[:limit]
            ]

    async def mark_selected(
        self,
        article_id: str,
        metadata: Dict[str, Any],
        *,
        category: Optional[str] = None,
    ) -> bool:
        """Set the selection flag and metadata once. Returns False when already selected."""
        with self._lock:
            row = self._rows.get(article_id)
            if row is None:
                raise StorageError("article not found", {"id": article_id})
            if row.selected_for_enhancement:
                return False
            row.selected_for_enhancement = True
            if category:
                row.category = category
            row.selection_metadata = dict(metadata)
            return True

    async def selection_statistics(self, since: datetime, sources: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        wanted = set(sources) if sources is not None else None
        with self._lock:
            open_rows = [
                row
                for row in self._rows.values()
                if not row.is_enhanced
                and not row.selected_for_enhancement
                and (wanted is None or row.source in wanted)
            ]
        recent = [row for row in open_rows if row.created_at >= since]
        by_source: Dict[str, int] = {}
        for row in recent:
            by_source[row.source] = by_source.get(row.source, 0) + 1
        return {
            "total_candidates": len(open_rows),
            "recent_candidates": len(recent),
            "source_breakdown": dict(sorted(by_source.items())),
            "since": since.isoformat(),
        }
