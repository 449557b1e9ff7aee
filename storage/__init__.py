"""
Storage Module
存储模块 - 稿件表访问 (内存 / Postgres)
"""
from .article_store import ArticleStore, InMemoryArticleStore, StoredArticle

__all__ = [
    "ArticleStore",
    "InMemoryArticleStore",
    "StoredArticle",
    "PostgresArticleStore",
    "get_article_store",
]


def __getattr__(name):
    if name == "PostgresArticleStore":
        from .postgres_store import PostgresArticleStore

        return PostgresArticleStore
    raise AttributeError(name)


def get_article_store(backend=None):
    """按配置构造稿件存储"""
    from config import get_store_settings
    from utils.exceptions import ConfigurationError

    settings = get_store_settings()
    name = (backend or settings.backend or "memory").strip().lower()
    if name == "memory":
        return InMemoryArticleStore()
    if name == "postgres":
        if not settings.pg_dsn:
            raise ConfigurationError("STORE_PG_DSN is required for the postgres backend")
        from .postgres_store import PostgresArticleStore

        return PostgresArticleStore(
            pg_dsn=settings.pg_dsn,
            table=settings.table,
            statement_timeout_ms=settings.statement_timeout_ms,
        )
    raise ConfigurationError(f"Unknown store backend: {name}")
