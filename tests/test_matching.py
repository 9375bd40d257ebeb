import logging
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from expert_match.admission import AdmissionControl, RetryPolicy
from expert_match.config import MatchConfig
from expert_match.context import RequestContext
from expert_match.database import SQLiteRepository
from expert_match.embeddings import EmbeddingSimilarityScorer
from expert_match.errors import CaseNotFoundError, InvalidRequestError, RequestCancelledError
from expert_match.graph_scorer import GraphSignalScorer
from expert_match.graph_store import SQLiteGraphStore
from expert_match.ids import SequentialIdGenerator
from expert_match.jobs import JobState
from expert_match.matching import MatchingService
from expert_match.models import (
    CaseType,
    ClinicalExperience,
    Doctor,
    Facility,
    MatchOptions,
    MedicalCase,
    MedicalSpecialty,
    RoutingOptions,
    UrgencyLevel,
)

NYC = (40.7128, -74.0060)


class _KeywordEmbeddingBackend:
    """Deterministic vectors: one axis per clinical area plus a bias term."""

    def embed(self, texts):
        vectors = []
        for text in texts:
            lowered = text.lower()
            cardiac = 1.0 if ("chest" in lowered or "cardiology" in lowered) else 0.0
            neuro = 1.0 if ("headache" in lowered or "neurology" in lowered) else 0.0
            vectors.append([cardiac, neuro, 0.1])
        return vectors


def _seed(repo: SQLiteRepository) -> None:
    repo.upsert_specialty(MedicalSpecialty(id="s1", name="Cardiology", related_specialty_ids=["s3"]))
    repo.upsert_specialty(MedicalSpecialty(id="s2", name="Neurology"))
    repo.upsert_specialty(MedicalSpecialty(id="s3", name="Internal Medicine"))

    repo.upsert_doctor(
        Doctor(
            id="d1",
            name="Dr. Heart",
            specialties=["Cardiology"],
            certifications=["ACLS"],
            facility_ids=["f1"],
            telehealth_enabled=True,
        )
    )
    repo.upsert_doctor(Doctor(id="d2", name="Dr. Brain", specialties=["Neurology"]))
    repo.upsert_doctor(Doctor(id="d3", name="Dr. General", specialties=["Internal Medicine"]))
    repo.upsert_doctor(
        Doctor(
            id="d4",
            name="Dr. Busy",
            specialties=["Cardiology"],
            facility_ids=["f2"],
            availability_status="BUSY",
        )
    )

    repo.upsert_facility(
        Facility(
            id="f1",
            name="Harbor Heart Center",
            facility_type="HOSPITAL",
            latitude=NYC[0],
            longitude=NYC[1],
            capabilities=["Cardiology", "ICU"],
            capacity=100,
            current_occupancy=50,
        )
    )
    repo.upsert_facility(
        Facility(
            id="f2",
            name="Westside Neuro Clinic",
            facility_type="CLINIC",
            latitude=34.0522,
            longitude=-118.2437,
            capabilities=["Neurology"],
            capacity=10,
            current_occupancy=10,
        )
    )
    repo.upsert_facility(
        Facility(id="f3", name="County General", facility_type="HOSPITAL", capabilities=["ICU"])
    )

    repo.upsert_case(
        MedicalCase(
            id="c-1",
            chief_complaint="Chest pain",
            icd10_codes=["I21.9", "I10"],
            urgency_level=UrgencyLevel.HIGH,
            required_specialty="Cardiology",
            case_type=CaseType.CONSULT_REQUEST,
        )
    )
    repo.upsert_case(
        MedicalCase(
            id="c-2",
            chief_complaint="Headache",
            urgency_level=UrgencyLevel.LOW,
            required_specialty="Neurology",
            case_type=CaseType.CONSULT_REQUEST,
        )
    )
    repo.upsert_case(
        MedicalCase(
            id="c-3",
            chief_complaint="Rash",
            icd10_codes=["L51.1", "L27.0", "T78.3", "R21"],
            urgency_level=UrgencyLevel.CRITICAL,
            required_specialty="Dermatology",
            case_type=CaseType.INPATIENT,
        )
    )

    for idx in range(3):
        case_id = f"p-{idx}"
        repo.upsert_case(MedicalCase(id=case_id, icd10_codes=["I21.9"], abstract_text="chest pain"))
        repo.save_case_embedding(case_id, [1.0, 0.0, 0.1])
        repo.add_experience(
            ClinicalExperience(id=f"e-{idx}", doctor_id="d1", case_id=case_id, outcome="SUCCESS", rating=5)
        )
    repo.upsert_case(MedicalCase(id="p-9", icd10_codes=["G43.9"], abstract_text="headache"))
    repo.save_case_embedding("p-9", [0.0, 1.0, 0.1])
    repo.add_experience(
        ClinicalExperience(id="e-9", doctor_id="d4", case_id="p-9", outcome="FAILED", rating=1)
    )


def _build(tmp_path, *, with_graph: bool = True, persist: bool = True) -> tuple[MatchingService, SQLiteRepository]:
    db_file = str(tmp_path / "matching_test.db")
    config = MatchConfig(db_path=db_file, persist_matches=persist)
    repo = SQLiteRepository(db_file)
    repo.init_db()
    _seed(repo)

    graph = SQLiteGraphStore(db_file if with_graph else str(tmp_path / "no_graph.db"))
    if with_graph:
        graph.sync_from_repository(repo)

    admission = AdmissionControl()
    service = MatchingService(
        repository=repo,
        embeddings=EmbeddingSimilarityScorer(
            backend=_KeywordEmbeddingBackend(),
            admission=admission,
            retry_policy=RetryPolicy(max_retries=0, initial_delay=0.0, max_delay=0.0),
            repository=repo,
        ),
        graph=GraphSignalScorer(backend=graph),
        config=config,
        executor=ThreadPoolExecutor(max_workers=2),
        job_executor=ThreadPoolExecutor(max_workers=1),
        id_generator=SequentialIdGenerator("m"),
    )
    return service, repo


@pytest.fixture
def world(tmp_path):
    service, repo = _build(tmp_path)
    yield service, repo
    service.executor.shutdown(wait=True)
    service.job_executor.shutdown(wait=True)


def _wait_for(service: MatchingService, job_id: str, timeout: float = 5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        job = service.job_status(job_id)
        if job is not None and job.terminal:
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


def test_match_doctors_ranks_and_persists(world) -> None:
    service, repo = world
    ranked = service.match_doctors("c-1")

    assert [m.candidate_id for m in ranked] == ["d1", "d4"]
    assert [m.rank for m in ranked] == [1, 2]
    assert ranked[0].score.overall_score >= ranked[1].score.overall_score
    assert ranked[0].score.overall_score == pytest.approx(100.0, abs=0.01)
    assert "Graph relationships: 1.00" in ranked[0].rationale
    assert ranked[0].score.component("specialization_match").value == 1.0

    stored = repo.list_consultation_matches("c-1")
    assert [(m.doctor_id, m.rank) for m in stored] == [("d1", 1), ("d4", 2)]
    assert [m.id for m in stored] == ["m-000001", "m-000002"]
    assert repo.find_case_embeddings(["c-1"])["c-1"] == [1.0, 0.0, 0.1]


def test_repeat_match_replaces_previous_matches(world) -> None:
    service, repo = world
    service.match_doctors("c-1")
    service.match_doctors("c-1", {"max_results": 1})

    assert [m.doctor_id for m in repo.list_consultation_matches("c-1")] == ["d1"]


def test_persistence_can_be_disabled(tmp_path) -> None:
    service, repo = _build(tmp_path, persist=False)
    try:
        assert service.match_doctors("c-1")
        assert repo.list_consultation_matches("c-1") == []
    finally:
        service.executor.shutdown(wait=True)
        service.job_executor.shutdown(wait=True)


def test_case_ids_are_normalized(world) -> None:
    service, _ = world
    ranked = service.match_doctors("  C-1 ")
    assert [m.candidate_id for m in ranked] == ["d1", "d4"]


def test_unknown_and_blank_case_ids(world) -> None:
    service, _ = world
    with pytest.raises(CaseNotFoundError) as exc_info:
        service.match_doctors("missing-case")
    assert exc_info.value.case_id == "missing-case"

    with pytest.raises(InvalidRequestError):
        service.match_doctors("   ")


def test_invalid_options_are_rejected(world) -> None:
    service, _ = world
    with pytest.raises(InvalidRequestError):
        service.match_doctors("c-1", {"max_results": 3, "unknown_field": True})
    with pytest.raises(InvalidRequestError):
        service.match_doctors("c-1", {"min_score": 150})


def test_non_positive_max_results_falls_back_to_default() -> None:
    assert MatchOptions(max_results=0).max_results == 10
    assert RoutingOptions(max_results=-3).max_results == 5
    assert MatchOptions(max_results=None).max_results == 10


def test_coerced_non_positive_max_results_falls_back_to_default() -> None:
    assert MatchOptions.model_validate({"max_results": -1.0}).max_results == 10
    assert MatchOptions.model_validate({"max_results": "0"}).max_results == 10
    assert RoutingOptions.model_validate({"max_results": "-2"}).max_results == 5
    assert RoutingOptions.model_validate({"max_results": 3.0}).max_results == 3


def test_candidate_filters(world) -> None:
    service, _ = world
    telehealth = service.match_doctors("c-1", MatchOptions(require_telehealth=True))
    assert [m.candidate_id for m in telehealth] == ["d1"]

    certified = service.match_doctors("c-1", MatchOptions(required_capabilities=["acls"]))
    assert [m.candidate_id for m in certified] == ["d1"]

    at_facility = service.match_doctors("c-1", MatchOptions(preferred_facility_ids=["f2"]))
    assert [m.candidate_id for m in at_facility] == ["d4"]

    truncated = service.match_doctors("c-1", MatchOptions(max_results=1))
    assert [(m.candidate_id, m.rank) for m in truncated] == [("d1", 1)]


def test_filters_reach_past_the_candidate_pool(world) -> None:
    service, repo = world
    for idx in range(60):
        repo.upsert_doctor(Doctor(id=f"a-{idx:02d}", name="In clinic", specialties=["Cardiology"]))
    repo.upsert_doctor(
        Doctor(id="z-tele", name="Remote", specialties=["Cardiology"], telehealth_enabled=True)
    )

    ranked = service.match_doctors("c-1", MatchOptions(require_telehealth=True, max_results=5))
    assert sorted(m.candidate_id for m in ranked) == ["d1", "z-tele"]


def test_include_excluded_logs_rejection_reasons(world, caplog) -> None:
    service, _ = world
    with caplog.at_level(logging.INFO, logger="expert_match.matching"):
        ranked = service.match_doctors(
            "c-1", MatchOptions(require_telehealth=True, include_excluded=True)
        )

    assert [m.candidate_id for m in ranked] == ["d1"]
    excluded = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Excluded")]
    assert len(excluded) == 1
    assert excluded[0].startswith("Excluded d4 (telehealth not enabled): ")
    assert "Historical performance" in excluded[0]


def test_include_excluded_reports_low_scores_and_distance(world, caplog) -> None:
    service, _ = world
    with caplog.at_level(logging.INFO, logger="expert_match.matching"):
        doctors = service.match_doctors("c-1", {"min_score": 60.0, "include_excluded": True})
        nearby = service.route_facilities(
            "c-1",
            RoutingOptions(
                max_distance_km=100.0,
                origin_latitude=NYC[0],
                origin_longitude=NYC[1],
                include_excluded=True,
            ),
        )

    messages = [r.getMessage() for r in caplog.records]
    assert [m.candidate_id for m in doctors] == ["d1"]
    assert any(m.startswith("Excluded d4 (score ") and "below 60.00" in m for m in messages)
    assert [m.candidate_id for m in nearby] == ["f1", "f3"]
    assert any(m.startswith("Excluded f2 (") and "km away" in m for m in messages)


def test_excluded_candidates_are_not_reported_at_info_by_default(world, caplog) -> None:
    service, _ = world
    with caplog.at_level(logging.INFO, logger="expert_match.matching"):
        service.match_doctors("c-1", MatchOptions(min_score=60.0))

    assert not any(r.getMessage().startswith("Excluded") for r in caplog.records)


def test_min_score_can_exclude_everyone(world) -> None:
    service, _ = world
    ranked = service.match_doctors(
        "c-1", MatchOptions(preferred_specialties=["Neurology"], min_score=90.0)
    )
    assert ranked == []


def test_preferred_specialties_override_required_specialty(world) -> None:
    service, _ = world
    ranked = service.match_doctors("c-1", MatchOptions(preferred_specialties=["neurology"]))

    assert [m.candidate_id for m in ranked] == ["d2"]
    score = ranked[0].score
    assert "vector_similarity" in score.missing
    assert "Vector similarity: n/a (re-weighted)" in score.rationale


def test_general_pool_used_when_specialty_has_no_doctors(world) -> None:
    service, _ = world
    ranked = service.match_doctors("c-3")

    assert sorted(m.candidate_id for m in ranked) == ["d1", "d2", "d3", "d4"]
    assert [m.rank for m in ranked] == [1, 2, 3, 4]
    scores = [m.score.overall_score for m in ranked]
    assert scores == sorted(scores, reverse=True)


def test_missing_graph_redistributes_weight(tmp_path) -> None:
    service, _ = _build(tmp_path, with_graph=False)
    try:
        ranked = service.match_doctors("c-1")
    finally:
        service.executor.shutdown(wait=True)
        service.job_executor.shutdown(wait=True)

    assert [m.candidate_id for m in ranked] == ["d1", "d4"]
    assert all("graph_relationship" in m.score.missing for m in ranked)
    assert ranked[0].score.overall_score == pytest.approx(100.0, abs=0.01)


def test_cancelled_request_raises(world) -> None:
    service, _ = world
    ctx = RequestContext()
    ctx.cancel_token.cancel()
    with pytest.raises(RequestCancelledError):
        service.match_doctors("c-1", context=ctx)


def test_single_pair_score_matches_ranked_score(world) -> None:
    service, repo = world
    case = repo.find_cases_by_ids(["c-1"])["c-1"]
    doctor = repo.find_doctors_by_ids(["d1"])["d1"]

    direct = service.score(case, doctor)
    ranked = service.match_doctors("c-1")

    assert direct.overall_score == ranked[0].score.overall_score


def test_route_facilities_orders_by_fit(world) -> None:
    service, _ = world
    ranked = service.route_facilities("c-1")

    assert [m.candidate_id for m in ranked] == ["f1", "f3", "f2"]
    assert ranked[0].score.overall_score == pytest.approx(80.0)
    assert ranked[0].score.component("capacity").value == pytest.approx(0.5)


def test_route_facilities_distance_and_type_filters(world) -> None:
    service, _ = world
    nearby = service.route_facilities(
        "c-1",
        RoutingOptions(max_distance_km=100.0, origin_latitude=NYC[0], origin_longitude=NYC[1]),
    )
    assert [m.candidate_id for m in nearby] == ["f1", "f3"]
    assert nearby[0].score.component("geographic").value == pytest.approx(1.0)

    clinics = service.route_facilities("c-1", {"preferred_facility_types": ["clinic"]})
    assert [m.candidate_id for m in clinics] == ["f2"]

    icu = service.route_facilities("c-1", RoutingOptions(required_capabilities=["icu"], max_results=1))
    assert [m.candidate_id for m in icu] == ["f1"]


def test_prioritize_consults_defaults_to_open_requests(world) -> None:
    service, _ = world
    queue = service.prioritize_consults()

    assert [(p.case_id, p.rank) for p in queue] == [("c-1", 1), ("c-2", 2)]
    assert queue[0].urgency_level is UrgencyLevel.HIGH
    assert queue[0].score.component("availability").value == pytest.approx(0.5)


def test_prioritize_explicit_cases(world) -> None:
    service, _ = world
    queue = service.prioritize_consults(["c-2", "C-3", "c-1"])

    assert [p.case_id for p in queue] == ["c-3", "c-1", "c-2"]
    with pytest.raises(CaseNotFoundError):
        service.prioritize_consults(["c-1", "nope"])


def test_priority_score_for_single_case(world) -> None:
    service, repo = world
    case = repo.find_cases_by_ids(["c-2"])["c-2"]
    score = service.priority_score(case)

    assert score.component("urgency").value == pytest.approx(0.25)
    assert score.component("availability").value == pytest.approx(1.0)


def test_async_match_job_completes(world) -> None:
    service, _ = world
    job_id = service.submit_match_doctors("c-1")

    assert job_id.startswith("match-")
    job = _wait_for(service, job_id)
    assert job.state is JobState.COMPLETED
    assert [m.candidate_id for m in job.result] == ["d1", "d4"]


def test_async_jobs_record_failures(world) -> None:
    service, _ = world
    job = _wait_for(service, service.submit_route_facilities("ghost"))

    assert job.state is JobState.FAILED
    assert "ghost" in job.error_message
    assert service.job_status("match-unknown") is None


def test_async_prioritize_job(world) -> None:
    service, _ = world
    job = _wait_for(service, service.submit_prioritize_consults())

    assert job.state is JobState.COMPLETED
    assert [p.case_id for p in job.result] == ["c-1", "c-2"]
