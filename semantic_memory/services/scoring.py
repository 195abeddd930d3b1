"""
Hybrid ranking for memory retrieval.

    hybrid = (semantic_weight * similarity + recency_weight * recency) * (0.5 + importance)
    recency = exp(-days_since_last_access / decay_days)

Weights are passed in explicitly (see ScoringConfig); nothing here reads
process configuration, so every function is pure and safe to call from any
thread.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class ScoringConfig:
    semantic_weight: float = 0.8
    recency_weight: float = 0.2
    decay_days: float = 30.0

    @staticmethod
    def from_config() -> "ScoringConfig":
        import semantic_memory.config as config

        return ScoringConfig(
            semantic_weight=config.SEMANTIC_WEIGHT,
            recency_weight=config.RECENCY_WEIGHT,
            decay_days=config.RECENCY_DECAY_DAYS,
        )

    def score(
        self,
        similarity: float,
        last_accessed: Optional[datetime],
        importance: float,
        now: Optional[datetime] = None,
    ) -> float:
        return hybrid_score(
            similarity,
            last_accessed,
            importance,
            semantic_weight=self.semantic_weight,
            recency_weight=self.recency_weight,
            decay_days=self.decay_days,
            now=now,
        )


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_since(last_accessed: Optional[datetime], now: Optional[datetime] = None) -> float:
    if last_accessed is None:
        return 0.0
    current = _aware(now) if now is not None else datetime.now(timezone.utc)
    elapsed = (current - _aware(last_accessed)).total_seconds() / SECONDS_PER_DAY
    # Clock skew can put last_accessed slightly in the future.
    return max(elapsed, 0.0)


def recency_score(
    last_accessed: Optional[datetime],
    decay_days: float = 30.0,
    now: Optional[datetime] = None,
) -> float:
    """exp(-days/decay_days); 1.0 at the moment of access, tends to 0."""
    return math.exp(-days_since(last_accessed, now) / decay_days)


def hybrid_score(
    similarity: float,
    last_accessed: Optional[datetime],
    importance: float,
    *,
    semantic_weight: float = 0.8,
    recency_weight: float = 0.2,
    decay_days: float = 30.0,
    now: Optional[datetime] = None,
) -> float:
    # Negative cosine similarity flows through unchanged.
    recency = recency_score(last_accessed, decay_days, now)
    base = semantic_weight * similarity + recency_weight * recency
    return base * (0.5 + importance)


__all__ = [
    "ScoringConfig",
    "days_since",
    "recency_score",
    "hybrid_score",
]
