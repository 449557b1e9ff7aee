"""Postgres-backed article store (psycopg 3, async connections)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from core import CandidateItem, RecentTopicRecord
from utils.exceptions import StorageError

logger = logging.getLogger(__name__)

_CANDIDATE_COLUMNS = (
    "id",
    "title",
    "summary",
    "content",
    "url",
    "source",
    "category",
    "published_at",
    "created_at",
    "image_url",
)


def _row_to_candidate(row: Dict[str, Any]) -> CandidateItem:
    return CandidateItem(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        summary=row.get("summary"),
        content=str(row.get("content") or ""),
        url=str(row.get("url") or ""),
        source=str(row.get("source") or ""),
        category=row.get("category"),
        published_at=row.get("published_at"),
        created_at=row["created_at"],
        image_url=row.get("image_url"),
    )


@dataclass
class PostgresArticleStore:
    """Content table access; every write is a single-row conditional UPDATE."""

    pg_dsn: str
    table: str = "articles"
    statement_timeout_ms: int = 15000

    async def _connect(self) -> psycopg.AsyncConnection:
        try:
            conn = await psycopg.AsyncConnection.connect(self.pg_dsn, row_factory=dict_row)
        except psycopg.Error as exc:
            raise StorageError("postgres connect failed", {"error": str(exc)}) from exc
        try:
            await conn.execute(
                sql.SQL("SET statement_timeout = {}").format(sql.Literal(int(self.statement_timeout_ms)))
            )
        except psycopg.Error as exc:
            await conn.close()
            raise StorageError("postgres session setup failed", {"error": str(exc)}) from exc
        return conn

    async def _fetch(self, query: sql.Composable, params: Sequence[Any]) -> List[Dict[str, Any]]:
        conn = await self._connect()
        try:
            async with conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return list(await cur.fetchall())
        except psycopg.Error as exc:
            raise StorageError("postgres read failed", {"table": self.table, "error": str(exc)}) from exc

    async def fetch_candidates(self, sources: Sequence[str], since: datetime, limit: int) -> List[CandidateItem]:
        if not sources or limit <= 0:
            return []
        query = sql.SQL(
            """
            SELECT {columns}
            FROM {table}
            WHERE source = ANY(%s)
              AND selected_for_enhancement = false
              AND is_enhanced = false
              AND created_at >= %s
              AND content IS NOT NULL AND btrim(content) <> ''
              AND (enhancement_metadata IS NULL OR enhancement_metadata->>'source_article_status' IS NULL)
            ORDER BY created_at DESC, id DESC
            LIMIT %s
            """
        ).format(
            columns=sql.SQL(", ").join(sql.Identifier(name) for name in _CANDIDATE_COLUMNS),
            table=sql.Identifier(self.table),
        )
        rows = await self._fetch(query, [list(sources), since, int(limit)])
        return [_row_to_candidate(row) for row in rows]

    async def reset_stale_selections(
        self,
        older_than: datetime,
        *,
        sources: Optional[Sequence[str]] = None,
        limit: int = 20,
        reason: str = "stale_selection_reset",
    ) -> List[str]:
        source_clause = sql.SQL("AND source = ANY(%s)") if sources is not None else sql.SQL("")
        query = sql.SQL(
            """
            UPDATE {table} AS t
            SET selected_for_enhancement = false,
                selection_metadata = COALESCE(t.selection_metadata, '{{}}'::jsonb) || %s
            WHERE t.id IN (
                SELECT id FROM {table}
                WHERE selected_for_enhancement = true
                  AND is_enhanced = false
                  AND (selection_metadata->>'selected_at')::timestamptz < %s
                  {source_clause}
                ORDER BY (selection_metadata->>'selected_at')::timestamptz ASC
                LIMIT %s
            )
            RETURNING t.id
            """
        ).format(table=sql.Identifier(self.table), source_clause=source_clause)
        stamp = {
            "reset_at": datetime.now(timezone.utc).isoformat(),
            "reset_reason": reason,
            "previously_stuck": True,
        }
        params: List[Any] = [Jsonb(stamp), older_than]
        if sources is not None:
            params.append(list(sources))
        params.append(int(limit))

        conn = await self._connect()
        try:
            async with conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise StorageError("stale reset failed", {"table": self.table, "error": str(exc)}) from exc
        reset_ids = [str(row["id"]) for row in rows]
        if reset_ids:
            logger.info("stale_reset table=%s count=%s reason=%s", self.table, len(reset_ids), reason)
        return reset_ids

    async def fetch_recent_selected_titles(self, since: datetime, limit: int = 100) -> List[str]:
        query = sql.SQL(
            """
            SELECT title FROM {table}
            WHERE selected_for_enhancement = true AND created_at >= %s
            ORDER BY created_at DESC
            LIMIT %s
            """
        ).format(table=sql.Identifier(self.table))
        rows = await self._fetch(query, [since, int(limit)])
        return [str(row["title"] or "") for row in rows]

    async def fetch_recent_topics(self, since: datetime, limit: int = 40) -> List[RecentTopicRecord]:
        query = sql.SQL(
            """
            SELECT title, summary, created_at, category FROM {table}
            WHERE is_enhanced = true AND created_at >= %s
            ORDER BY created_at DESC
            LIMIT %s
            """
        ).format(table=sql.Identifier(self.table))
        rows = await self._fetch(query, [since, int(limit)])
        return [
            RecentTopicRecord(
                title=str(row["title"] or ""),
                summary=row.get("summary"),
                created_at=row["created_at"],
                category=row.get("category"),
            )
            for row in rows
        ]

    async def mark_selected(
        self,
        article_id: str,
        metadata: Dict[str, Any],
        *,
        category: Optional[str] = None,
    ) -> bool:
        query = sql.SQL(
            """
            UPDATE {table}
            SET selected_for_enhancement = true,
                category = COALESCE(%s, category),
                selection_metadata = %s
            WHERE id = %s AND selected_for_enhancement = false
            RETURNING id
            """
        ).format(table=sql.Identifier(self.table))
        conn = await self._connect()
        try:
            async with conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, [category, Jsonb(metadata), article_id])
                    updated = await cur.fetchone()
                    if updated is not None:
                        return True
                    await cur.execute(
                        sql.SQL("SELECT 1 FROM {table} WHERE id = %s").format(table=sql.Identifier(self.table)),
                        [article_id],
                    )
                    exists = await cur.fetchone()
        except psycopg.Error as exc:
            raise StorageError("selection commit failed", {"id": article_id, "error": str(exc)}) from exc
        if exists is None:
            raise StorageError("article not found", {"id": article_id})
        return False

    async def selection_statistics(self, since: datetime, sources: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        source_clause = sql.SQL("AND source = ANY(%s)") if sources is not None else sql.SQL("")
        query = sql.SQL(
            """
            SELECT source,
                   count(*) AS total,
                   count(*) FILTER (WHERE created_at >= %s) AS recent
            FROM {table}
            WHERE is_enhanced = false AND selected_for_enhancement = false
              {source_clause}
            GROUP BY source
            """
        ).format(table=sql.Identifier(self.table), source_clause=source_clause)
        params: List[Any] = [since]
        if sources is not None:
            params.append(list(sources))
        rows = await self._fetch(query, params)
        by_source = {str(row["source"]): int(row["recent"]) for row in rows if int(row["recent"]) > 0}
        return {
            "total_candidates": sum(int(row["total"]) for row in rows),
            "recent_candidates": sum(by_source.values()),
            "source_breakdown": dict(sorted(by_source.items())),
            "since": since.isoformat(),
        }
