"""Ranking score: semantic similarity blended with decayed importance.

    weeks      = |now - last_accessed| / 7 days
    stability  = half_life * (1 + consolidation * log2(access_count + 1))
    decayed    = importance * 0.5 ** (weeks / stability)
    similarity = clamp(1 - distance, 0, 1)
    score      = similarity * w + decayed * (1 - w)

Every ranking and display path goes through score_components(), so the
number shown to a caller is the number the results were sorted by.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import as_utc, utc_now

DEFAULT_IMPORTANCE = 0.5
_WEEK = timedelta(days=7)


@dataclass(frozen=True)
class ScoringConfig:
    half_life_weeks: float = 4.0
    consolidation_factor: float = 1.0
    semantic_weight: float = 0.7

    @classmethod
    def from_settings(cls, settings) -> "ScoringConfig":
        return cls(
            half_life_weeks=settings.half_life_weeks,
            consolidation_factor=settings.consolidation_factor,
            semantic_weight=settings.semantic_weight,
        )


@dataclass(frozen=True)
class ScoreComponents:
    weeks_elapsed: float
    stability: float
    decayed_importance: float
    similarity: float
    score: float


def stability(access_count: int, config: ScoringConfig) -> float:
    """Effective half-life in weeks; grows with prior accesses."""
    return config.half_life_weeks * (
        1 + config.consolidation_factor * math.log2(access_count + 1)
    )


def similarity_from_distance(distance: float) -> float:
    # Cosine distance spans [0, 2]; clamp so similarity stays in [0, 1]
    return min(1.0, max(0.0, 1.0 - distance))


def score_components(
    importance: Optional[float],
    last_accessed: datetime,
    access_count: int,
    distance: float,
    config: ScoringConfig = ScoringConfig(),
    now: Optional[datetime] = None,
) -> ScoreComponents:
    now = as_utc(now) if now is not None else utc_now()
    weeks = abs(now - as_utc(last_accessed)) / _WEEK
    stable = stability(access_count, config)
    base = importance if importance is not None else DEFAULT_IMPORTANCE
    decayed = base * math.pow(0.5, weeks / stable)
    similarity = similarity_from_distance(distance)
    score = similarity * config.semantic_weight + decayed * (1 - config.semantic_weight)
    return ScoreComponents(
        weeks_elapsed=weeks,
        stability=stable,
        decayed_importance=decayed,
        similarity=similarity,
        score=score,
    )


def score(
    importance: Optional[float],
    last_accessed: datetime,
    access_count: int,
    distance: float,
    config: ScoringConfig = ScoringConfig(),
    now: Optional[datetime] = None,
) -> float:
    return score_components(
        importance, last_accessed, access_count, distance, config, now
    ).score


def decayed_importance(
    importance: Optional[float],
    last_accessed: datetime,
    access_count: int,
    config: ScoringConfig = ScoringConfig(),
    now: Optional[datetime] = None,
) -> float:
    return score_components(
        importance, last_accessed, access_count, 1.0, config, now
    ).decayed_importance
