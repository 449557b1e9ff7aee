"""Title/URL normalization keys and small time helpers shared by the selection stages."""

from __future__ import annotations

from datetime import datetime, timezone
import re
import unicodedata
from typing import List, Optional
from urllib.parse import urlsplit


TITLE_KEY_PREFIX = 50

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\w+")
_TEST_WORD_RE = re.compile(r"\btest\b", re.IGNORECASE)
_PLACEHOLDER_MARKERS = ("測試", "测试", "lorem ipsum", "placeholder")


def normalize_title_key(title: str, prefix: int = TITLE_KEY_PREFIX) -> str:
    """
    Lowercased, punctuation-free, whitespace-collapsed title prefix.

    Punctuation is removed with a Unicode-aware pattern so CJK text survives.
    Applying the function to its own output returns the same key.
    """
    text = unicodedata.normalize("NFKC", str(title or "")).lower()
    text = _PUNCT_RE.sub("", text)
    text = _SPACE_RE.sub(" ", text).strip()
    return text[: max(1, int(prefix))].rstrip()


def normalize_url_key(url: str) -> str:
    """Scheme-less, ``www.``-less host plus path, without query, fragment or trailing slash."""
    raw = str(url or "").strip()
    if not raw:
        return ""
    parts = urlsplit(raw if "://" in raw else f"//{raw}")
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    path = re.sub(r"/{2,}", "/", parts.path or "").rstrip("/")
    return f"{host}{path}".lower()


def word_tokens(text: str) -> List[str]:
    return _WORD_RE.findall(unicodedata.normalize("NFKC", str(text or "")).lower())


def looks_like_test_title(title: str) -> bool:
    text = str(title or "").strip()
    if len(text) < 5:
        return True
    lowered = text.lower()
    if lowered == "title":
        return True
    if _TEST_WORD_RE.search(text):
        return True
    return any(marker in lowered for marker in _PLACEHOLDER_MARKERS)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_since(moment: datetime, now: datetime) -> float:
    delta = as_utc(now) - as_utc(moment)
    return max(0.0, delta.total_seconds() / 3600.0)


def time_ago_label(moment: datetime, now: datetime) -> str:
    minutes = int(hours_since(moment, now) * 60)
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"
