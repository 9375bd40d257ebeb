from __future__ import annotations

import logging

from .admission import AdmissionControl, RetryPolicy
from .aggregator import ScoreAggregator
from .config import MatchConfig
from .database import SQLiteRepository
from .description import (
    FallbackCaseDescriber,
    GeminiCaseDescriber,
    OpenAICaseDescriber,
    StructuredCaseDescriber,
)
from .embeddings import (
    EmbeddingSimilarityScorer,
    GeminiEmbeddingBackend,
    OpenAIEmbeddingBackend,
)
from .graph_scorer import GraphSignalScorer
from .graph_store import SQLiteGraphStore
from .historical import HistoricalPerformanceScorer
from .matching import MatchingService
from .observability import configure_logging
from .protocols import CaseDescriber, EmbeddingBackend, GraphBackend

logger = logging.getLogger(__name__)


def build_describer(config: MatchConfig) -> tuple[CaseDescriber, str]:
    mode = (config.describer_mode or "structured").strip().lower()
    structured = StructuredCaseDescriber()

    if mode == "structured":
        return structured, "structured"

    def _build_openai() -> OpenAICaseDescriber:
        return OpenAICaseDescriber(
            model=config.openai_model,
            max_output_tokens=config.openai_max_output_tokens,
            request_timeout_seconds=config.openai_timeout_seconds,
            api_key=config.openai_api_key or None,
        )

    def _build_gemini() -> GeminiCaseDescriber:
        return GeminiCaseDescriber(
            model=config.gemini_model,
            max_output_tokens=config.gemini_max_output_tokens,
            api_key=config.gemini_api_key or None,
        )

    if mode == "openai":
        return _build_openai(), f"openai:{config.openai_model}"

    if mode == "gemini":
        return _build_gemini(), f"gemini:{config.gemini_model}"

    if mode == "hybrid":
        try:
            llm = _build_openai()
            return (
                FallbackCaseDescriber(primary=llm, fallback=structured),
                f"hybrid(openai:{config.openai_model}->structured)",
            )
        except Exception as exc:
            logger.warning(
                "Failed to initialize OpenAI describer in hybrid mode; using structured only. %s",
                exc,
            )
            return structured, "structured(fallback-init)"

    if mode in {"hybrid-gemini", "hybrid_gemini"}:
        try:
            llm = _build_gemini()
            return (
                FallbackCaseDescriber(primary=llm, fallback=structured),
                f"hybrid(gemini:{config.gemini_model}->structured)",
            )
        except Exception as exc:
            logger.warning(
                "Failed to initialize Gemini describer in hybrid-gemini mode; using structured only. %s",
                exc,
            )
            return structured, "structured(fallback-init)"

    logger.warning("Unsupported EXPERT_MATCH_DESCRIBER_MODE=%s; using structured.", mode)
    return structured, "structured(unsupported-mode)"


def build_embedding_backend(config: MatchConfig) -> tuple[EmbeddingBackend, str]:
    mode = (config.embedding_mode or "openai").strip().lower()
    if mode == "gemini":
        return (
            GeminiEmbeddingBackend(
                model=config.gemini_embedding_model,
                dimensions=config.embedding_dimensions,
                api_key=config.gemini_api_key or None,
            ),
            f"gemini:{config.gemini_embedding_model}",
        )
    if mode != "openai":
        logger.warning("Unsupported EXPERT_MATCH_EMBEDDING_MODE=%s; using openai.", mode)
    return (
        OpenAIEmbeddingBackend(
            model=config.openai_embedding_model,
            dimensions=config.embedding_dimensions,
            request_timeout_seconds=config.openai_timeout_seconds,
            api_key=config.openai_api_key or None,
        ),
        f"openai:{config.openai_embedding_model}",
    )


def build_service(
    config: MatchConfig,
    *,
    repository: SQLiteRepository | None = None,
    graph_backend: GraphBackend | None = None,
    embedding_backend: EmbeddingBackend | None = None,
    describer: CaseDescriber | None = None,
    admission: AdmissionControl | None = None,
) -> MatchingService:
    configure_logging(config.log_level)
    repo = repository or SQLiteRepository(config.db_path)
    repo.init_db()
    graph = graph_backend or SQLiteGraphStore(config.db_path)

    describer_label = "injected"
    if describer is None:
        describer, describer_label = build_describer(config)
    embedding_label = "injected"
    if embedding_backend is None:
        embedding_backend, embedding_label = build_embedding_backend(config)

    gate = admission or AdmissionControl.from_config(config)
    embeddings = EmbeddingSimilarityScorer(
        backend=embedding_backend,
        admission=gate,
        retry_policy=RetryPolicy.from_config(config),
        describer=describer,
        repository=repo,
    )
    logger.info("Matching service using describer=%s embeddings=%s", describer_label, embedding_label)
    return MatchingService(
        repository=repo,
        embeddings=embeddings,
        graph=GraphSignalScorer(
            backend=graph,
            similar_cases_saturation=config.similar_cases_saturation,
            related_specialty_score=config.related_specialty_score,
        ),
        historical=HistoricalPerformanceScorer(),
        aggregator=ScoreAggregator(
            doctor_weights=dict(config.doctor_weights),
            route_weights=dict(config.route_weights),
            priority_weights=dict(config.priority_weights),
            default_max_distance_km=config.default_max_distance_km,
            critical_care_capabilities=list(config.critical_care_capabilities),
        ),
        config=config,
        describer_label=describer_label,
        embedding_label=embedding_label,
    )
