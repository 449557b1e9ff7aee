"""Acceptance threshold derived from the live score distribution."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Dict, Optional, Sequence


logger = logging.getLogger(__name__)

FIXED_THRESHOLD = 80.0
MIN_THRESHOLD = 65.0
MAX_THRESHOLD = 85.0
TARGET_PERCENTILE = 0.3
LOW_MEDIAN = 70.0
LOW_MEDIAN_PENALTY = 10.0


@dataclass(frozen=True)
class ThresholdDecision:
    threshold: float
    method: str
    percentile_score: Optional[float] = None
    median: Optional[float] = None

    def model_dump(self) -> Dict[str, Any]:
        return asdict(self)


def compute_threshold(scores: Sequence[float], enabled: bool = True) -> ThresholdDecision:
    """
    Top-30% cutoff clamped to [65, 85]; a median under 70 lowers it by 10 (floor 65).

    Fewer than three scores, or the feature disabled, yields the fixed 80.
    """
    values = [float(score) for score in scores]
    if not enabled or len(values) < 3:
        return ThresholdDecision(threshold=FIXED_THRESHOLD, method="fixed")

    ordered = sorted(values, reverse=True)
    n = len(ordered)
    percentile_score = ordered[min(int(n * TARGET_PERCENTILE), n - 1)]
    median = ordered[n // 2]

    threshold = max(MIN_THRESHOLD, min(MAX_THRESHOLD, percentile_score))
    if median < LOW_MEDIAN:
        threshold = max(MIN_THRESHOLD, threshold - LOW_MEDIAN_PENALTY)

    logger.info(
        "dynamic_threshold n=%s min=%.1f median=%.1f max=%.1f percentile=%.1f threshold=%.1f",
        n,
        ordered[-1],
        median,
        ordered[0],
        percentile_score,
        threshold,
    )
    return ThresholdDecision(
        threshold=threshold,
        method="dynamic",
        percentile_score=percentile_score,
        median=median,
    )
