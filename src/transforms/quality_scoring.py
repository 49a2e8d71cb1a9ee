"""Provenance-based quality scoring.

This module scores property records by quality tier and confidence and
decides whether an incoming record may replace a stored one.
"""

from __future__ import annotations

from core.constants import DEFAULT_CONFIDENCE, REPLACEMENT_THRESHOLD
from core.types import QualityTier

TIER_BASE_SCORES: dict[QualityTier, float] = {
    "individual": 100.0,
    "listing": 90.0,
    "aggregated": 50.0,
    "estimated": 25.0,
}


def quality_score(tier: QualityTier, confidence: float | None = None) -> float:
    """Compute the quality score of a record.

    Args:
        tier: Provenance quality tier.
        confidence: Uncertainty multiplier; ``None`` means 1.0.

    Returns:
        ``tier_base(tier) * confidence``.
    """
    effective_confidence = DEFAULT_CONFIDENCE if confidence is None else confidence
    return TIER_BASE_SCORES[tier] * effective_confidence


def should_replace(new_score: float, existing_score: float) -> bool:
    """Return True when the new score beats the stored one by the threshold."""
    return new_score > existing_score * REPLACEMENT_THRESHOLD
