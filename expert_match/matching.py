from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from pydantic import ValidationError

from .aggregator import ScoreAggregator, distance_km
from .config import MatchConfig
from .context import RequestContext, ensure_context
from .embeddings import EmbeddingSimilarityScorer
from .errors import CaseNotFoundError, InvalidRequestError
from .graph_scorer import GraphSignalScorer
from .historical import HistoricalPerformanceScorer
from .ids import IdGenerator, ObjectIdGenerator
from .jobs import AsyncJobRegistry, Job, JobKind, JobRunner
from .models import (
    CaseType,
    ClinicalExperience,
    CompositeScore,
    ConsultationMatch,
    Doctor,
    Facility,
    MatchOptions,
    MedicalCase,
    PrioritizedCase,
    RankedMatch,
    RoutingOptions,
    normalize_id,
)
from .observability import Observability, context_logger
from .protocols import MatchingRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _label(value: str) -> str:
    return " ".join(value.strip().lower().split())


def _coerce_options(options: Any, model: type[T]) -> T:
    if options is None:
        return model()
    if isinstance(options, model):
        return options
    try:
        return model.model_validate(options)
    except ValidationError as exc:
        raise InvalidRequestError(f"Invalid {model.__name__}: {exc}") from exc


def rank_by_score(scored: Sequence[tuple[Any, CompositeScore]], max_results: int) -> list[RankedMatch]:
    ordered = sorted(scored, key=lambda item: (-item[1].overall_score, item[0].id))
    return [
        RankedMatch(candidate=candidate, score=score, rank=index)
        for index, (candidate, score) in enumerate(ordered[:max_results], start=1)
    ]


@dataclass
class MatchingService:
    repository: MatchingRepository
    embeddings: EmbeddingSimilarityScorer
    graph: GraphSignalScorer
    historical: HistoricalPerformanceScorer = field(default_factory=HistoricalPerformanceScorer)
    aggregator: ScoreAggregator = field(default_factory=ScoreAggregator)
    config: MatchConfig = field(default_factory=MatchConfig)
    executor: Optional[Executor] = None
    id_generator: IdGenerator = field(default_factory=ObjectIdGenerator)
    jobs: Optional[AsyncJobRegistry] = None
    job_executor: Optional[Executor] = None
    describer_label: str = "structured"
    embedding_label: str = "unknown"

    def __post_init__(self) -> None:
        self._owned: list[Executor] = []
        if self.executor is None:
            self.executor = ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="expert-match-score",
            )
            self._owned.append(self.executor)
        if self.job_executor is None:
            self.job_executor = ThreadPoolExecutor(
                max_workers=self.config.job_workers,
                thread_name_prefix="expert-match-job",
            )
            self._owned.append(self.job_executor)
        if self.jobs is None:
            self.jobs = AsyncJobRegistry(self.config.job_capacity, id_generator=self.id_generator)
        self._runner = JobRunner(registry=self.jobs, executor=self.job_executor)

    # Doctors

    def match_doctors(
        self,
        case_id: str,
        options: MatchOptions | Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> list[RankedMatch]:
        ctx = ensure_context(context)
        log = context_logger(logger, ctx)
        opts = _coerce_options(options, MatchOptions)
        case = self._load_case(case_id)
        ctx.check()

        candidates = self._doctor_candidates(case, opts)
        log.info("Scoring %s doctor candidates for case %s", len(candidates), case.id)
        scored: list[tuple[Doctor, CompositeScore]] = []
        if candidates:
            experiences = self.repository.find_experiences_by_doctor_ids([d.id for d in candidates])
            prior_vectors = self._prior_case_vectors(experiences.values(), exclude=case.id)
            case_vector = self.embeddings.case_vector(case, ctx)
            graph_available = self.graph.graph_available(ctx)
            tasks = [
                self._doctor_task(
                    case,
                    doctor,
                    experiences.get(doctor.id, []),
                    prior_vectors,
                    case_vector,
                    graph_available,
                    ctx,
                )
                for doctor in candidates
            ]
            scored = list(zip(candidates, self._fan_out(tasks, ctx)))

        kept = self._apply_filters(
            scored,
            lambda doctor: _doctor_rejection(doctor, opts),
            opts.min_score,
            ctx,
            include_excluded=opts.include_excluded,
        )
        ranked = rank_by_score(kept, opts.max_results)
        ctx.check()
        if self.config.persist_matches:
            self._persist_matches(case.id, ranked)
        log.info("Case %s matched %s doctors", case.id, len(ranked))
        return ranked

    def score(
        self, case: MedicalCase, doctor: Doctor, context: RequestContext | None = None
    ) -> CompositeScore:
        ctx = ensure_context(context)
        experiences = self.repository.find_experiences_by_doctor_ids([doctor.id]).get(doctor.id, [])
        prior_vectors = self._prior_case_vectors([experiences], exclude=case.id)
        case_vector = self.embeddings.case_vector(case, ctx)
        return self._doctor_task(
            case,
            doctor,
            experiences,
            prior_vectors,
            case_vector,
            self.graph.graph_available(ctx),
            ctx,
        )()

    def _doctor_task(
        self,
        case: MedicalCase,
        doctor: Doctor,
        experiences: Sequence[ClinicalExperience],
        prior_vectors: Mapping[str, list[float]],
        case_vector: Optional[list[float]],
        graph_available: bool,
        ctx: RequestContext,
    ) -> Callable[[], CompositeScore]:
        def _score() -> CompositeScore:
            ctx.check()
            vectors = [prior_vectors.get(normalize_id(e.case_id)) for e in experiences]
            vector_similarity = self.embeddings.similarity(case_vector, vectors)
            graph_signals = self.graph.score(
                doctor.id, case, ctx, graph_available=graph_available
            )
            historical = self.historical.score(experiences)
            return self.aggregator.doctor_composite(vector_similarity, graph_signals, historical)

        return _score

    def _doctor_candidates(self, case: MedicalCase, opts: MatchOptions) -> list[Doctor]:
        limit = max(
            opts.max_results * self.config.candidate_pool_multiplier,
            self.config.minimum_candidate_pool,
        )
        filters: dict[str, Any] = {}
        if not opts.include_excluded:
            filters = {
                "telehealth_only": opts.require_telehealth,
                "facility_ids": opts.preferred_facility_ids,
                "capabilities": opts.required_capabilities,
            }
        if opts.preferred_specialties:
            doctors = self.repository.find_doctors_by_specialties(
                opts.preferred_specialties, limit=limit, **filters
            )
        elif self._has_specialists(case.required_specialty):
            doctors = self.repository.find_doctors_by_specialties(
                [case.required_specialty], limit=limit, **filters
            )
        else:
            doctors = self.repository.find_doctors_by_ids(
                self.repository.find_doctor_ids(limit=limit, **filters)
            )
        return sorted(doctors.values(), key=lambda d: d.id)

    def _has_specialists(self, specialty: str) -> bool:
        label = _label(specialty)
        if not label:
            return False
        return self.repository.count_doctors_by_specialty([label]).get(label, 0) > 0

    def _prior_case_vectors(
        self,
        experience_groups: Iterable[Sequence[ClinicalExperience]],
        *,
        exclude: str,
    ) -> dict[str, list[float]]:
        case_ids = {
            normalize_id(e.case_id)
            for group in experience_groups
            for e in group
            if normalize_id(e.case_id) != exclude
        }
        if not case_ids:
            return {}
        return self.repository.find_case_embeddings(sorted(case_ids))

    def _persist_matches(self, case_id: str, ranked: Sequence[RankedMatch]) -> None:
        matches = [
            ConsultationMatch(
                id=self.id_generator.next(),
                case_id=case_id,
                doctor_id=match.candidate.id,
                match_score=match.score.overall_score,
                rationale=match.rationale,
                rank=match.rank,
            )
            for match in ranked
        ]
        self.repository.replace_consultation_matches(case_id, matches)

    # Facilities

    def route_facilities(
        self,
        case_id: str,
        options: RoutingOptions | Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> list[RankedMatch]:
        ctx = ensure_context(context)
        log = context_logger(logger, ctx)
        opts = _coerce_options(options, RoutingOptions)
        case = self._load_case(case_id)
        ctx.check()

        facilities = self._facility_candidates(opts)
        log.info("Scoring %s facilities for case %s", len(facilities), case.id)
        scored: list[tuple[Facility, CompositeScore]] = []
        if facilities:
            outcomes = self._facility_outcomes(facilities)
            tasks = [
                self._route_task(case, facility, outcomes.get(facility.id), opts, ctx)
                for facility in facilities
            ]
            scored = list(zip(facilities, self._fan_out(tasks, ctx)))

        kept = self._apply_filters(
            scored,
            lambda facility: _facility_rejection(facility, opts),
            opts.min_score,
            ctx,
            include_excluded=opts.include_excluded,
        )
        ranked = rank_by_score(kept, opts.max_results)
        ctx.check()
        log.info("Case %s routed to %s facilities", case.id, len(ranked))
        return ranked

    def route_score(
        self,
        case: MedicalCase,
        facility: Facility,
        context: RequestContext | None = None,
        options: RoutingOptions | None = None,
    ) -> CompositeScore:
        ctx = ensure_context(context)
        outcomes = self._facility_outcomes([facility])
        return self._route_task(case, facility, outcomes.get(facility.id), options, ctx)()

    def _route_task(
        self,
        case: MedicalCase,
        facility: Facility,
        historical: Optional[float],
        opts: RoutingOptions | None,
        ctx: RequestContext,
    ) -> Callable[[], CompositeScore]:
        def _score() -> CompositeScore:
            ctx.check()
            return self.aggregator.route_composite(case, facility, historical, opts)

        return _score

    def _facility_candidates(self, opts: RoutingOptions) -> list[Facility]:
        limit = max(
            opts.max_results * self.config.candidate_pool_multiplier,
            self.config.minimum_candidate_pool,
        )
        if opts.include_excluded:
            facilities = self.repository.find_facilities(limit=limit)
        else:
            facilities = self.repository.find_facilities(
                facility_types=opts.preferred_facility_types,
                capabilities=opts.required_capabilities,
                limit=limit,
            )
        return sorted(facilities.values(), key=lambda f: f.id)

    def _facility_outcomes(self, facilities: Sequence[Facility]) -> dict[str, float]:
        affiliated = self.repository.find_doctor_ids_by_facility_ids(
            [f.id for f in facilities],
            limit_per_facility=self.config.facility_doctor_limit,
        )
        doctor_ids = sorted({d for ids in affiliated.values() for d in ids})
        experiences = (
            self.repository.find_experiences_by_doctor_ids(doctor_ids) if doctor_ids else {}
        )
        return {
            facility.id: self.historical.score_many(
                experiences.get(d, []) for d in affiliated.get(facility.id, [])
            )
            for facility in facilities
        }

    # Consult queue

    def priority_score(
        self, case: MedicalCase, context: RequestContext | None = None
    ) -> CompositeScore:
        ctx = ensure_context(context)
        ctx.check()
        return self._priority_scores([case])[case.id]

    def prioritize_consults(
        self,
        case_ids: Sequence[str] | None = None,
        context: RequestContext | None = None,
    ) -> list[PrioritizedCase]:
        ctx = ensure_context(context)
        log = context_logger(logger, ctx)
        if case_ids:
            cases = self._load_cases(case_ids)
        else:
            open_ids = self.repository.find_case_ids(
                case_type=CaseType.CONSULT_REQUEST.value,
                limit=self.config.open_consult_limit,
            )
            cases = list(self.repository.find_cases_by_ids(open_ids).values())
        ctx.check()
        scores = self._priority_scores(cases)
        ordered = sorted(cases, key=lambda c: (-scores[c.id].overall_score, c.id))
        log.info("Prioritized %s consult requests", len(ordered))
        return [
            PrioritizedCase(
                case_id=case.id,
                score=scores[case.id],
                rank=index,
                urgency_level=case.urgency_level,
            )
            for index, case in enumerate(ordered, start=1)
        ]

    def _priority_scores(self, cases: Sequence[MedicalCase]) -> dict[str, CompositeScore]:
        specialties = sorted({_label(c.required_specialty) for c in cases if c.required_specialty.strip()})
        counts = self.repository.count_doctors_by_specialty(specialties) if specialties else {}
        pool_limit = self.config.minimum_candidate_pool
        by_specialty: dict[str, list[Doctor]] = {label: [] for label in specialties}
        if specialties:
            doctors = self.repository.find_doctors_by_specialties(
                specialties, limit=pool_limit * len(specialties)
            )
            for doctor in doctors.values():
                for label in {_label(s) for s in doctor.specialties}:
                    if label in by_specialty:
                        by_specialty[label].append(doctor)
        general: list[Doctor] = []
        if any(not c.required_specialty.strip() for c in cases):
            general = list(
                self.repository.find_doctors_by_ids(
                    self.repository.find_doctor_ids(limit=pool_limit)
                ).values()
            )

        scores: dict[str, CompositeScore] = {}
        for case in cases:
            label = _label(case.required_specialty)
            if label:
                count: Optional[int] = counts.get(label, 0)
                candidates = sorted(by_specialty.get(label, []), key=lambda d: d.id)[:pool_limit]
            else:
                count = None
                candidates = general
            scores[case.id] = self.aggregator.priority_composite(
                case,
                doctors_with_specialty=count,
                candidates=candidates,
            )
        return scores

    # Async jobs

    def submit_match_doctors(
        self,
        case_id: str,
        options: MatchOptions | Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> str:
        return self._runner.submit(JobKind.MATCH_DOCTORS, self.match_doctors, case_id, options, context)

    def submit_route_facilities(
        self,
        case_id: str,
        options: RoutingOptions | Mapping[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> str:
        return self._runner.submit(
            JobKind.ROUTE_FACILITIES, self.route_facilities, case_id, options, context
        )

    def submit_prioritize_consults(
        self,
        case_ids: Sequence[str] | None = None,
        context: RequestContext | None = None,
    ) -> str:
        return self._runner.submit(JobKind.PRIORITIZE, self.prioritize_consults, case_ids, context)

    def job_status(self, job_id: str) -> Job | None:
        return self.jobs.status(job_id)

    def observability(self) -> Observability:
        return Observability(admission=self.embeddings.admission, jobs=self.jobs)

    def close(self) -> None:
        for executor in self._owned:
            executor.shutdown(wait=True)
        self._owned.clear()

    # Shared

    def _load_case(self, case_id: str) -> MedicalCase:
        return self._load_cases([case_id])[0]

    def _load_cases(self, case_ids: Sequence[str]) -> list[MedicalCase]:
        normalized = []
        for raw in case_ids:
            case_id = normalize_id(raw)
            if not case_id:
                raise InvalidRequestError("Case id must not be blank.")
            normalized.append(case_id)
        found = self.repository.find_cases_by_ids(normalized)
        ordered = list(dict.fromkeys(normalized))
        for case_id in ordered:
            if case_id not in found:
                raise CaseNotFoundError(case_id)
        return [found[case_id] for case_id in ordered]

    def _fan_out(self, tasks: Sequence[Callable[[], T]], ctx: RequestContext) -> list[T]:
        futures = [self.executor.submit(task) for task in tasks]
        position = {future: index for index, future in enumerate(futures)}
        results: list[Any] = [None] * len(futures)
        try:
            for future in as_completed(futures):
                results[position[future]] = future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        ctx.check()
        return results

    def _apply_filters(
        self,
        scored: Sequence[tuple[Any, CompositeScore]],
        reject: Callable[[Any], Optional[str]],
        min_score: Optional[float],
        ctx: RequestContext,
        *,
        include_excluded: bool = False,
    ) -> list[tuple[Any, CompositeScore]]:
        log = context_logger(logger, ctx)
        report = log.info if include_excluded else log.debug
        kept = []
        for candidate, score in scored:
            reason = reject(candidate)
            if reason is None and min_score is not None and score.overall_score < min_score:
                reason = f"score {score.overall_score:.2f} below {min_score:.2f}"
            if reason is None:
                kept.append((candidate, score))
            else:
                report("Excluded %s (%s): %s", candidate.id, reason, score.rationale)
        return kept


def _doctor_rejection(doctor: Doctor, opts: MatchOptions) -> Optional[str]:
    if opts.require_telehealth and not doctor.telehealth_enabled:
        return "telehealth not enabled"
    preferred = {f.strip() for f in opts.preferred_facility_ids if f.strip()}
    if preferred and not preferred.intersection(f.strip() for f in doctor.facility_ids):
        return "no preferred facility affiliation"
    required = {_label(c) for c in opts.required_capabilities if c.strip()}
    held = {_label(s) for s in doctor.specialties} | {_label(c) for c in doctor.certifications}
    missing = sorted(required - held)
    if missing:
        return f"missing capabilities: {', '.join(missing)}"
    return None


def _facility_rejection(facility: Facility, opts: RoutingOptions) -> Optional[str]:
    types = {t.strip().upper() for t in opts.preferred_facility_types if t.strip()}
    if types and facility.facility_type.strip().upper() not in types:
        return f"facility type {facility.facility_type}"
    required = {_label(c) for c in opts.required_capabilities if c.strip()}
    missing = sorted(required - {_label(c) for c in facility.capabilities})
    if missing:
        return f"missing capabilities: {', '.join(missing)}"
    if opts.max_distance_km is not None:
        distance = distance_km(facility, opts)
        if distance is not None and distance > opts.max_distance_km:
            return f"{distance:.1f} km away"
    return None
