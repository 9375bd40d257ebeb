from .admission import AdmissionControl, ResourceCategory, RetryPolicy, retry_with_backoff
from .aggregator import ScoreAggregator
from .config import MatchConfig
from .context import CancellationToken, RequestContext
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
from .factory import build_describer, build_embedding_backend, build_service
from .graph_scorer import GraphSignalScorer
from .graph_store import SQLiteGraphStore
from .historical import HistoricalPerformanceScorer
from .ids import ObjectIdGenerator
from .jobs import AsyncJobRegistry, JobRunner
from .matching import MatchingService

__all__ = [
    "AdmissionControl",
    "AsyncJobRegistry",
    "CancellationToken",
    "EmbeddingSimilarityScorer",
    "FallbackCaseDescriber",
    "GeminiCaseDescriber",
    "GeminiEmbeddingBackend",
    "GraphSignalScorer",
    "HistoricalPerformanceScorer",
    "JobRunner",
    "MatchConfig",
    "MatchingService",
    "ObjectIdGenerator",
    "OpenAICaseDescriber",
    "OpenAIEmbeddingBackend",
    "RequestContext",
    "ResourceCategory",
    "RetryPolicy",
    "SQLiteGraphStore",
    "SQLiteRepository",
    "ScoreAggregator",
    "StructuredCaseDescriber",
    "build_describer",
    "build_embedding_backend",
    "build_service",
    "retry_with_backoff",
]
