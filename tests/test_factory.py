import expert_match.factory as factory
from expert_match.config import MatchConfig
from expert_match.description import FallbackCaseDescriber, StructuredCaseDescriber
from expert_match.graph_store import SQLiteGraphStore
from expert_match.matching import MatchingService


class _StubDescriber:
    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def describe(self, case):
        raise NotImplementedError


class _StubEmbeddingBackend:
    def __init__(self, **kwargs):
        self.kwargs = kwargs

    def embed(self, texts):
        return [[1.0, 0.0] for _ in texts]


class _BrokenDescriber:
    def __init__(self, **kwargs):
        raise ImportError("openai package is not installed")


def test_structured_mode_is_default() -> None:
    describer, label = factory.build_describer(MatchConfig(describer_mode="structured"))
    assert isinstance(describer, StructuredCaseDescriber)
    assert label == "structured"


def test_factory_builds_openai_describer(monkeypatch) -> None:
    monkeypatch.setattr(factory, "OpenAICaseDescriber", _StubDescriber)
    cfg = MatchConfig(describer_mode="openai", openai_model="gpt-4.1-mini", openai_api_key="sk-test")
    describer, label = factory.build_describer(cfg)

    assert isinstance(describer, _StubDescriber)
    assert describer.kwargs["model"] == "gpt-4.1-mini"
    assert describer.kwargs["api_key"] == "sk-test"
    assert label == "openai:gpt-4.1-mini"


def test_factory_builds_hybrid_gemini_describer(monkeypatch) -> None:
    monkeypatch.setattr(factory, "GeminiCaseDescriber", _StubDescriber)
    cfg = MatchConfig(describer_mode="hybrid-gemini", gemini_model="gemini-2.5-flash")
    describer, label = factory.build_describer(cfg)

    assert isinstance(describer, FallbackCaseDescriber)
    assert isinstance(describer.primary, _StubDescriber)
    assert isinstance(describer.fallback, StructuredCaseDescriber)
    assert label == "hybrid(gemini:gemini-2.5-flash->structured)"


def test_hybrid_init_failure_falls_back_to_structured(monkeypatch) -> None:
    monkeypatch.setattr(factory, "OpenAICaseDescriber", _BrokenDescriber)
    describer, label = factory.build_describer(MatchConfig(describer_mode="hybrid"))

    assert isinstance(describer, StructuredCaseDescriber)
    assert label == "structured(fallback-init)"


def test_unsupported_mode_uses_structured() -> None:
    describer, label = factory.build_describer(MatchConfig(describer_mode="oracle"))
    assert isinstance(describer, StructuredCaseDescriber)
    assert label == "structured(unsupported-mode)"


def test_embedding_backend_selection(monkeypatch) -> None:
    monkeypatch.setattr(factory, "OpenAIEmbeddingBackend", _StubEmbeddingBackend)
    monkeypatch.setattr(factory, "GeminiEmbeddingBackend", _StubEmbeddingBackend)

    backend, label = factory.build_embedding_backend(
        MatchConfig(embedding_mode="gemini", embedding_dimensions=64)
    )
    assert backend.kwargs["dimensions"] == 64
    assert label == "gemini:gemini-embedding-001"

    _, label = factory.build_embedding_backend(MatchConfig(embedding_mode="unknown"))
    assert label == "openai:text-embedding-3-small"


def test_build_service_wires_components(monkeypatch, tmp_path) -> None:
    monkeypatch.setattr(factory, "OpenAIEmbeddingBackend", _StubEmbeddingBackend)
    db_file = str(tmp_path / "factory_test.db")
    cfg = MatchConfig(db_path=db_file, max_workers=1, job_workers=1, job_capacity=7)

    service = factory.build_service(cfg)
    try:
        assert isinstance(service, MatchingService)
        assert isinstance(service.graph.backend, SQLiteGraphStore)
        assert service.describer_label == "structured"
        assert service.embedding_label == "openai:text-embedding-3-small"
        assert service.jobs.capacity == 7
        assert service.aggregator.doctor_weights == cfg.doctor_weights
        assert service.repository.find_doctor_ids(limit=5) == []
    finally:
        service.close()


def test_build_service_configures_logging(monkeypatch, tmp_path) -> None:
    levels = []
    monkeypatch.setattr(factory, "configure_logging", levels.append)
    monkeypatch.setattr(factory, "OpenAIEmbeddingBackend", _StubEmbeddingBackend)
    cfg = MatchConfig(db_path=str(tmp_path / "logging_test.db"), log_level="DEBUG")

    service = factory.build_service(cfg)
    try:
        assert levels == ["DEBUG"]
        snapshot = service.observability().snapshot()
        assert snapshot["jobs"] == {"PENDING": 0, "COMPLETED": 0, "FAILED": 0}
        assert "EMBEDDING" in snapshot["admission"]
    finally:
        service.close()
