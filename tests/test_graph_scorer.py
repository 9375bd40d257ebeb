import pytest

from expert_match.context import RequestContext
from expert_match.database import SQLiteRepository
from expert_match.errors import GraphQueryError, RequestCancelledError
from expert_match.graph_queries import GraphQuery, direct_relationship
from expert_match.graph_scorer import GraphSignalScorer
from expert_match.graph_store import SQLiteGraphStore
from expert_match.models import (
    ClinicalExperience,
    Doctor,
    MedicalCase,
    MedicalSpecialty,
)


def _seed(tmp_path) -> tuple[SQLiteRepository, SQLiteGraphStore, MedicalCase]:
    db_file = str(tmp_path / "graph_test.db")
    repo = SQLiteRepository(db_file)
    repo.init_db()
    repo.upsert_specialty(MedicalSpecialty(id="s1", name="Cardiology", related_specialty_ids=["s3"]))
    repo.upsert_specialty(MedicalSpecialty(id="s2", name="Neurology"))
    repo.upsert_specialty(MedicalSpecialty(id="s3", name="Internal Medicine"))
    repo.upsert_doctor(Doctor(id="d1", name="Cardiologist", specialties=["Cardiology"]))
    repo.upsert_doctor(Doctor(id="d2", name="Neurologist", specialties=["Neurology"]))
    repo.upsert_doctor(Doctor(id="d3", name="Internist", specialties=["Internal Medicine"]))

    case = MedicalCase(id="c-1", icd10_codes=["I21.9", "I10"], required_specialty="Cardiology")
    repo.upsert_case(case)
    for idx in range(6):
        repo.upsert_case(MedicalCase(id=f"p-{idx}", icd10_codes=["I21.9"]))
        repo.add_experience(
            ClinicalExperience(id=f"e-{idx}", doctor_id="d1", case_id=f"p-{idx}", outcome="SUCCESS")
        )
    repo.add_experience(ClinicalExperience(id="e-direct", doctor_id="d2", case_id="c-1"))

    graph = SQLiteGraphStore(db_file)
    graph.sync_from_repository(repo)
    return repo, graph, case


def test_graph_bootstrap_is_idempotent(tmp_path) -> None:
    graph = SQLiteGraphStore(str(tmp_path / "empty.db"))
    assert graph.exists() is False
    graph.create_if_not_exists()
    graph.create_if_not_exists()
    assert graph.exists() is True


def test_missing_graph_raises_query_error(tmp_path) -> None:
    graph = SQLiteGraphStore(str(tmp_path / "empty.db"))
    with pytest.raises(GraphQueryError):
        graph.execute(direct_relationship("d1", "c-1"))


def test_sub_scores_from_graph(tmp_path) -> None:
    _, graph, case = _seed(tmp_path)
    scorer = GraphSignalScorer(backend=graph)

    assert scorer.direct_relationship("d1", "c-1") == 0.0
    assert scorer.direct_relationship("d2", "C-1") == 1.0
    assert scorer.condition_expertise("d1", case.icd10_codes) == 0.5
    assert scorer.condition_expertise("d2", case.icd10_codes) == 1.0
    assert scorer.condition_expertise("d1", []) == 0.0
    assert scorer.specialization_match("d1", "cardiology") == 1.0
    assert scorer.specialization_match("d3", "Cardiology") == 0.5
    assert scorer.specialization_match("d2", "Cardiology") == 0.0
    assert scorer.specialization_match("d1", "  ") == 0.0
    assert scorer.similar_cases("d1", case.icd10_codes, exclude_case_id=case.id) == 1.0
    assert scorer.similar_cases("d2", case.icd10_codes, exclude_case_id=case.id) == 0.0


def test_consultation_edge_matches_case_id_in_any_case(tmp_path) -> None:
    _, graph, _ = _seed(tmp_path)
    graph.add_edge("Doctor", "d3", "CONSULTED_ON", "MedicalCase", "  C-1 ")
    scorer = GraphSignalScorer(backend=graph)

    assert scorer.direct_relationship("d3", "c-1") == 1.0
    assert scorer.direct_relationship("d3", "C-1") == 1.0


def test_similar_cases_saturation(tmp_path) -> None:
    _, graph, case = _seed(tmp_path)
    scorer = GraphSignalScorer(backend=graph, similar_cases_saturation=12)
    assert scorer.similar_cases("d1", case.icd10_codes) == pytest.approx(0.5)


def test_score_combines_sub_scores(tmp_path) -> None:
    _, graph, case = _seed(tmp_path)
    signals = GraphSignalScorer(backend=graph).score("d1", case)

    assert signals.available is True
    assert signals.specialization_match == 1.0
    assert signals.graph_relationship == 1.0


def test_missing_graph_marks_signal_unavailable(tmp_path) -> None:
    graph = SQLiteGraphStore(str(tmp_path / "empty.db"))
    signals = GraphSignalScorer(backend=graph).score("d1", MedicalCase(id="c-1", icd10_codes=["I10"]))

    assert signals.available is False
    assert signals.graph_relationship is None
    assert signals.condition_expertise == 0.0


class _FailingBackend:
    def __init__(self):
        self.queries: list[GraphQuery] = []

    def exists(self) -> bool:
        return True

    def create_if_not_exists(self) -> None:
        return None

    def execute(self, query: GraphQuery):
        self.queries.append(query)
        raise GraphQueryError("connection reset")


def test_query_failures_degrade_to_zero() -> None:
    backend = _FailingBackend()
    scorer = GraphSignalScorer(backend=backend)
    case = MedicalCase(id="c-1", icd10_codes=["I10"], required_specialty="Cardiology")

    signals = scorer.score("d1", case)

    assert signals.available is True
    assert signals.graph_relationship == 0.0
    assert {q.name for q in backend.queries} >= {"direct_relationship", "similar_cases"}


def test_cancelled_context_stops_graph_queries() -> None:
    backend = _FailingBackend()
    ctx = RequestContext()
    ctx.cancel_token.cancel()

    with pytest.raises(RequestCancelledError):
        GraphSignalScorer(backend=backend).score("d1", MedicalCase(id="c-1"), ctx)
    assert backend.queries == []


def test_cypher_text_is_parameterised() -> None:
    query = direct_relationship("d1", "c-1")
    assert "$doctorId" in query.cypher
    assert "TREATED|CONSULTED_ON" in query.cypher
    assert query.params == {"doctorId": "d1", "caseId": "c-1"}
