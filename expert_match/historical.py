from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from .models import ClinicalExperience

NEUTRAL_SCORE = 0.5

OUTCOME_VALUES = {
    "SUCCESS": 1.0,
    "RESOLVED": 1.0,
    "IMPROVED": 0.85,
    "STABLE": 0.6,
    "COMPLICATED": 0.25,
    "DETERIORATED": 0.1,
    "FAILED": 0.1,
    "DECEASED": 0.0,
}

COMPLEXITY_WEIGHTS = {
    "LOW": 1.0,
    "MEDIUM": 1.25,
    "HIGH": 1.5,
    "CRITICAL": 1.75,
}


@dataclass
class HistoricalPerformanceScorer:
    """Bounded outcome signal: neutral for no history, monotonic in each input."""

    outcome_weight: float = 0.5
    rating_weight: float = 0.35
    complication_weight: float = 0.15
    outcome_values: Mapping[str, float] = field(default_factory=lambda: dict(OUTCOME_VALUES))
    complexity_weights: Mapping[str, float] = field(
        default_factory=lambda: dict(COMPLEXITY_WEIGHTS)
    )

    def score(self, experiences: Sequence[ClinicalExperience]) -> float:
        if not experiences:
            return NEUTRAL_SCORE

        weighted_outcome = 0.0
        total_weight = 0.0
        for experience in experiences:
            weight = self.complexity_weights.get(experience.complexity_level.strip().upper(), 1.0)
            outcome = self.outcome_values.get(experience.outcome.strip().upper(), NEUTRAL_SCORE)
            weighted_outcome += weight * outcome
            total_weight += weight
        outcome_score = weighted_outcome / total_weight if total_weight else NEUTRAL_SCORE

        ratings = [e.rating for e in experiences if e.rating is not None]
        if ratings:
            rating_score = (sum(ratings) / len(ratings) - 1.0) / 4.0
        else:
            rating_score = NEUTRAL_SCORE

        complicated = sum(1 for e in experiences if e.complications)
        complication_free = 1.0 - complicated / len(experiences)

        total = self.outcome_weight + self.rating_weight + self.complication_weight
        value = (
            self.outcome_weight * outcome_score
            + self.rating_weight * _clamp(rating_score)
            + self.complication_weight * complication_free
        ) / total
        return round(_clamp(value), 4)

    def score_many(self, experiences: Iterable[Sequence[ClinicalExperience]]) -> float:
        pooled: list[ClinicalExperience] = []
        for group in experiences:
            pooled.extend(group)
        return self.score(pooled)


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))
