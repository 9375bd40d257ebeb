from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from . import graph_queries
from .context import RequestContext
from .graph_queries import first_count
from .models import MedicalCase
from .observability import context_logger
from .protocols import GraphBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GraphSignals:
    relationship_direct: float = 0.0
    condition_expertise: float = 0.0
    specialization_match: float = 0.0
    similar_cases: float = 0.0
    available: bool = True

    @property
    def graph_relationship(self) -> Optional[float]:
        if not self.available:
            return None
        return max(
            self.relationship_direct,
            self.condition_expertise,
            self.specialization_match,
            self.similar_cases,
        )

    def as_dict(self) -> dict[str, float]:
        return {
            "relationship_direct": self.relationship_direct,
            "condition_expertise": self.condition_expertise,
            "specialization_match": self.specialization_match,
            "similar_cases": self.similar_cases,
        }


UNAVAILABLE = GraphSignals(available=False)


@dataclass
class GraphSignalScorer:
    backend: GraphBackend
    similar_cases_saturation: int = 5
    related_specialty_score: float = 0.5

    def direct_relationship(
        self, candidate_id: str, case_id: str, context: RequestContext | None = None
    ) -> float:
        rows = self._run(graph_queries.direct_relationship(candidate_id, case_id), context)
        return 1.0 if first_count(rows, "relationships") > 0 else 0.0

    def condition_expertise(
        self, candidate_id: str, icd10_codes: list[str], context: RequestContext | None = None
    ) -> float:
        codes = _distinct_codes(icd10_codes)
        if not codes:
            return 0.0
        rows = self._run(graph_queries.condition_expertise(candidate_id, codes), context)
        return min(1.0, first_count(rows, "matched") / len(codes))

    def specialization_match(
        self, candidate_id: str, specialty: str, context: RequestContext | None = None
    ) -> float:
        if not specialty or not specialty.strip():
            return 0.0
        rows = self._run(graph_queries.specialization(candidate_id, specialty), context)
        if first_count(rows, "direct") > 0:
            return 1.0
        rows = self._run(graph_queries.related_specialization(candidate_id, specialty), context)
        if first_count(rows, "related") > 0:
            return self.related_specialty_score
        return 0.0

    def similar_cases(
        self,
        candidate_id: str,
        icd10_codes: list[str],
        context: RequestContext | None = None,
        *,
        exclude_case_id: str = "",
    ) -> float:
        codes = _distinct_codes(icd10_codes)
        if not codes:
            return 0.0
        rows = self._run(
            graph_queries.similar_cases(candidate_id, codes, exclude_case_id),
            context,
        )
        return min(1.0, first_count(rows, "similar") / max(1, self.similar_cases_saturation))

    def graph_available(self, context: RequestContext | None = None) -> bool:
        try:
            return bool(self.backend.exists())
        except Exception as exc:
            context_logger(logger, context).warning("Graph existence check failed: %s", exc)
            return False

    def score(
        self,
        candidate_id: str,
        case: MedicalCase,
        context: RequestContext | None = None,
        *,
        graph_available: bool | None = None,
    ) -> GraphSignals:
        available = self.graph_available(context) if graph_available is None else graph_available
        if not available:
            context_logger(logger, context).debug(
                "Graph unavailable; graph signals for %s are zero", candidate_id
            )
            return UNAVAILABLE
        codes = case.icd10_codes
        return GraphSignals(
            relationship_direct=self.direct_relationship(candidate_id, case.id, context),
            condition_expertise=self.condition_expertise(candidate_id, codes, context),
            specialization_match=self.specialization_match(
                candidate_id, case.required_specialty, context
            ),
            similar_cases=self.similar_cases(
                candidate_id, codes, context, exclude_case_id=case.id
            ),
        )

    def _run(self, query: graph_queries.GraphQuery, context: RequestContext | None) -> list[dict]:
        if context is not None:
            context.check()
        try:
            return self.backend.execute(query)
        except Exception as exc:
            context_logger(logger, context).warning(
                "Graph query %s failed: %s", query.name, exc
            )
            return []


def _distinct_codes(values: list[str]) -> list[str]:
    return list(dict.fromkeys(v.strip().upper() for v in values if v and v.strip()))
