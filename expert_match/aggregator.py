from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .graph_scorer import GraphSignals
from .models import (
    URGENCY_VALUE,
    ComponentScore,
    CompositeScore,
    Doctor,
    Facility,
    MedicalCase,
    RoutingOptions,
    UrgencyLevel,
)

NO_EVIDENCE = "No evidence available"
EARTH_RADIUS_KM = 6371.0

LABELS = {
    "vector_similarity": "Vector similarity",
    "graph_relationship": "Graph relationships",
    "historical_performance": "Historical performance",
    "complexity_match": "Complexity match",
    "historical_outcomes": "Historical outcomes",
    "capacity": "Capacity",
    "geographic": "Geographic proximity",
    "urgency": "Urgency",
    "complexity": "Case complexity",
    "availability": "Expert availability",
}


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def combine(signals: Sequence[ComponentScore]) -> CompositeScore:
    """Weighted sum scaled to 0-100; unknown signals hand their weight to the known ones."""
    weighted = [s for s in signals if s.weight > 0]
    present = [s for s in weighted if s.known]
    missing = tuple(s.name for s in weighted if not s.known)
    total_weight = sum(s.weight for s in weighted)
    present_weight = sum(s.weight for s in present)
    if not present or present_weight <= 0:
        return CompositeScore(
            overall_score=0.0,
            components=tuple(signals),
            rationale=NO_EVIDENCE,
            missing=missing,
        )
    raw = sum(s.weight * s.value for s in present) * (total_weight / present_weight)
    return CompositeScore(
        overall_score=round(100.0 * _clamp(raw), 4),
        components=tuple(signals),
        rationale=_rationale(weighted),
        missing=missing,
    )


def _rationale(signals: Sequence[ComponentScore]) -> str:
    parts = []
    for signal in signals:
        label = LABELS.get(signal.name, signal.name)
        if signal.known:
            parts.append(f"{label}: {signal.value:.2f} (w={signal.weight:.2f})")
        else:
            parts.append(f"{label}: n/a (re-weighted)")
    return ", ".join(parts)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def capacity_score(facility: Facility) -> float:
    if not facility.capacity or facility.capacity <= 0:
        return 0.0
    if facility.current_occupancy is None:
        return 1.0
    return _clamp(1.0 - facility.current_occupancy / facility.capacity)


def distance_km(facility: Facility, options: RoutingOptions | None) -> Optional[float]:
    if options is None or not options.has_origin:
        return None
    if facility.latitude is None or facility.longitude is None:
        return None
    return haversine_km(
        options.origin_latitude,
        options.origin_longitude,
        facility.latitude,
        facility.longitude,
    )


@dataclass
class ScoreAggregator:
    doctor_weights: dict[str, float] = field(
        default_factory=lambda: {"vector": 0.4, "graph": 0.4, "historical": 0.2}
    )
    route_weights: dict[str, float] = field(
        default_factory=lambda: {
            "complexity": 0.3,
            "historical": 0.3,
            "capacity": 0.2,
            "geographic": 0.2,
        }
    )
    priority_weights: dict[str, float] = field(
        default_factory=lambda: {"urgency": 0.5, "complexity": 0.3, "availability": 0.2}
    )
    default_max_distance_km: float = 500.0
    critical_care_capabilities: list[str] = field(
        default_factory=lambda: ["ICU", "INTENSIVE CARE"]
    )

    def doctor_composite(
        self,
        vector_similarity: Optional[float],
        graph: GraphSignals,
        historical: Optional[float],
    ) -> CompositeScore:
        weighted = [
            ComponentScore("vector_similarity", vector_similarity, self.doctor_weights.get("vector", 0.0)),
            ComponentScore("graph_relationship", graph.graph_relationship, self.doctor_weights.get("graph", 0.0)),
            ComponentScore("historical_performance", historical, self.doctor_weights.get("historical", 0.0)),
        ]
        composite = combine(weighted)
        details = tuple(
            ComponentScore(name, value, 0.0)
            for name, value in graph.as_dict().items()
        )
        return CompositeScore(
            overall_score=composite.overall_score,
            components=composite.components + details,
            rationale=composite.rationale,
            missing=composite.missing,
        )

    def route_composite(
        self,
        case: MedicalCase,
        facility: Facility,
        historical_outcomes: Optional[float],
        options: RoutingOptions | None = None,
    ) -> CompositeScore:
        return combine(
            [
                ComponentScore(
                    "complexity_match",
                    self.complexity_match(case, facility),
                    self.route_weights.get("complexity", 0.0),
                ),
                ComponentScore(
                    "historical_outcomes",
                    historical_outcomes,
                    self.route_weights.get("historical", 0.0),
                ),
                ComponentScore(
                    "capacity",
                    capacity_score(facility),
                    self.route_weights.get("capacity", 0.0),
                ),
                ComponentScore(
                    "geographic",
                    self.geographic(facility, options),
                    self.route_weights.get("geographic", 0.0),
                ),
            ]
        )

    def priority_composite(
        self,
        case: MedicalCase,
        *,
        doctors_with_specialty: Optional[int],
        candidates: Sequence[Doctor],
    ) -> CompositeScore:
        return combine(
            [
                ComponentScore(
                    "urgency",
                    self.urgency(case),
                    self.priority_weights.get("urgency", 0.0),
                ),
                ComponentScore(
                    "complexity",
                    self.case_complexity(case, doctors_with_specialty),
                    self.priority_weights.get("complexity", 0.0),
                ),
                ComponentScore(
                    "availability",
                    self.availability(candidates),
                    self.priority_weights.get("availability", 0.0),
                ),
            ]
        )

    def complexity_match(self, case: MedicalCase, facility: Facility) -> float:
        required = case.required_specialty.strip().lower()
        capabilities = [c.strip().lower() for c in facility.capabilities if c.strip()]
        if not required or not capabilities:
            score = 0.5
        elif any(c in required or required in c for c in capabilities):
            score = 1.0
        else:
            score = 0.25
        if case.urgency_level in (UrgencyLevel.CRITICAL, UrgencyLevel.HIGH):
            critical = {c.strip().lower() for c in self.critical_care_capabilities}
            if critical.intersection(capabilities):
                score = min(1.0, score + 0.25)
        return score

    def geographic(self, facility: Facility, options: RoutingOptions | None) -> float:
        distance = distance_km(facility, options)
        if distance is None:
            return 0.5
        max_distance = options.max_distance_km if options and options.max_distance_km else None
        limit = max_distance or self.default_max_distance_km
        return _clamp(1.0 - distance / limit)

    @staticmethod
    def urgency(case: MedicalCase) -> float:
        if case.urgency_level is None:
            return 0.5
        return URGENCY_VALUE[case.urgency_level]

    @staticmethod
    def case_complexity(case: MedicalCase, doctors_with_specialty: Optional[int]) -> float:
        breadth = min(1.0, len(case.distinct_icd10_codes) / 4.0)
        if not case.required_specialty.strip() or doctors_with_specialty is None:
            rarity = 0.5
        else:
            rarity = 1.0 / (1.0 + max(0, doctors_with_specialty) / 10.0)
        return _clamp(0.6 * breadth + 0.4 * rarity)

    @staticmethod
    def availability(candidates: Sequence[Doctor]) -> float:
        if not candidates:
            return 0.0
        return sum(1 for d in candidates if d.is_available) / len(candidates)
