"""Source tier table: per-tier quota, freshness window, content minimum and weight."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError

from core import TierConfig, TierTable
from utils.exceptions import ConfigurationError


DEFAULT_TIERS = TierTable(
    tiers=[
        TierConfig(
            name="premium",
            sources=frozenset({"HKFP", "scmp", "bloomberg", "TheStandard"}),
            quota=15,
            max_age_hours=12,
            min_content_chars=200,
            weight=100,
        ),
        TierConfig(
            name="mainstream",
            sources=frozenset({"RTHK", "SingTao", "on.cc"}),
            quota=25,
            max_age_hours=6,
            min_content_chars=100,
            weight=80,
        ),
        TierConfig(
            name="local",
            sources=frozenset({"HK01", "am730", "bastillepost"}),
            quota=12,
            max_age_hours=3,
            min_content_chars=50,
            weight=60,
        ),
    ]
)


def load_tier_table(tiers_json: Optional[str] = None) -> TierTable:
    """
    Build the tier table from a JSON override, or return the defaults.

    The override is an object keyed by tier name, e.g.
    ``{"premium": {"sources": ["HKFP"], "quota": 5, "max_age_hours": 12}}``.
    """
    text = str(tiers_json or "").strip()
    if not text:
        return DEFAULT_TIERS
    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("tier override is not valid JSON", {"error": str(exc)}) from exc
    if not isinstance(payload, dict) or not payload:
        raise ConfigurationError("tier override must be a non-empty JSON object")

    tiers = []
    for name, fields in payload.items():
        if not isinstance(fields, dict):
            raise ConfigurationError("tier definition must be an object", {"tier": name})
        try:
            tiers.append(TierConfig(name=str(name), **fields))
        except ValidationError as exc:
            raise ConfigurationError("invalid tier definition", {"tier": name, "error": str(exc)}) from exc
    try:
        return TierTable(tiers=tiers)
    except ValidationError as exc:
        raise ConfigurationError("invalid tier table", {"error": str(exc)}) from exc


def tier_for_source(table: TierTable, source: str) -> Optional[TierConfig]:
    for tier in table.tiers:
        if source in tier.sources:
            return tier
    return None


def tier_summary(table: TierTable) -> Dict[str, Dict[str, Any]]:
    return {
        tier.name: {
            "sources": sorted(tier.sources),
            "quota": tier.quota,
            "max_age_hours": tier.max_age_hours,
            "min_content_chars": tier.min_content_chars,
            "weight": tier.weight,
        }
        for tier in table.tiers
    }
