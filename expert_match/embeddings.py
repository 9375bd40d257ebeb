from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .admission import AdmissionControl, ResourceCategory, RetryPolicy
from .context import RequestContext
from .description import StructuredCaseDescriber, structured_description
from .errors import (
    AdmissionInterruptedError,
    EmbeddingError,
    RequestCancelledError,
    RetryInterruptedError,
)
from .models import MedicalCase
from .observability import context_logger
from .protocols import CaseDescriber, CaseRepository, EmbeddingBackend

logger = logging.getLogger(__name__)

_INTERRUPTIONS = (AdmissionInterruptedError, RetryInterruptedError, RequestCancelledError)

try:
    from openai import OpenAI
except ImportError:  # pragma: no cover
    OpenAI = None  # type: ignore[assignment]

try:
    from google import genai
    from google.genai import types as genai_types
except ImportError:  # pragma: no cover
    genai = None  # type: ignore[assignment]
    genai_types = None  # type: ignore[assignment]


@dataclass
class OpenAIEmbeddingBackend:
    model: str = "text-embedding-3-small"
    dimensions: int | None = None
    request_timeout_seconds: float = 20.0
    api_key: str | None = None
    client: Any | None = None

    def __post_init__(self) -> None:
        if self.client is not None:
            return
        if OpenAI is None:
            raise ImportError("openai package is not installed. Install the project dependencies.")
        self.client = OpenAI(api_key=self.api_key, timeout=self.request_timeout_seconds)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        kwargs: dict[str, Any] = {"model": self.model, "input": list(texts)}
        if self.dimensions:
            kwargs["dimensions"] = self.dimensions
        try:
            response = self.client.embeddings.create(**kwargs)
        except Exception as exc:
            raise EmbeddingError(f"OpenAI embedding request failed: {exc}") from exc
        items = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in items]


@dataclass
class GeminiEmbeddingBackend:
    model: str = "gemini-embedding-001"
    dimensions: int | None = None
    api_key: str | None = None
    client: Any | None = None

    def __post_init__(self) -> None:
        if self.client is not None:
            return
        if genai is None:
            raise ImportError(
                "google-genai package is not installed. Install the project dependencies."
            )
        self.client = genai.Client(api_key=self.api_key)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        config = None
        if self.dimensions and genai_types is not None:
            config = genai_types.EmbedContentConfig(output_dimensionality=self.dimensions)
        try:
            response = self.client.models.embed_content(
                model=self.model,
                contents=list(texts),
                config=config,
            )
        except Exception as exc:
            raise EmbeddingError(f"Gemini embedding request failed: {exc}") from exc
        return [list(item.values) for item in (response.embeddings or [])]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass
class EmbeddingSimilarityScorer:
    backend: EmbeddingBackend
    admission: AdmissionControl
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    describer: CaseDescriber = field(default_factory=StructuredCaseDescriber)
    repository: Optional[CaseRepository] = None

    def embed(self, text: str, context: RequestContext | None = None) -> list[float]:
        vectors = self.embed_batch([text], context)
        return vectors[0]

    def embed_batch(
        self, texts: Sequence[str], context: RequestContext | None = None
    ) -> list[list[float]]:
        if not texts:
            return []
        if context is not None:
            context.check()
        batch = list(texts)
        try:
            vectors = self.admission.run_with_retry(
                ResourceCategory.EMBEDDING,
                lambda: self.backend.embed(batch),
                policy=self.retry_policy,
                context=context,
            )
        except (_INTERRUPTIONS + (EmbeddingError,)):
            raise
        except Exception as exc:
            raise EmbeddingError(f"Embedding backend failed: {exc}") from exc
        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding backend returned {len(vectors)} vectors for {len(batch)} inputs."
            )
        return [[float(v) for v in vector] for vector in vectors]

    def case_text(self, case: MedicalCase, context: RequestContext | None = None) -> str:
        if case.abstract_text and case.abstract_text.strip():
            return case.abstract_text.strip()
        log = context_logger(logger, context)
        try:
            text = self.admission.run(
                ResourceCategory.CHAT,
                lambda: self.describer.describe(case),
                context=context,
            )
        except _INTERRUPTIONS:
            raise
        except Exception as exc:
            log.warning("Description generation failed for case %s: %s", case.id, exc)
            text = ""
        if text and text.strip():
            return text.strip()
        return structured_description(case)

    def case_vector(
        self, case: MedicalCase, context: RequestContext | None = None
    ) -> Optional[list[float]]:
        if case.embedding:
            return case.embedding
        log = context_logger(logger, context)
        try:
            vector = self.embed(self.case_text(case, context), context)
        except EmbeddingError as exc:
            log.warning("Embedding unavailable for case %s: %s", case.id, exc)
            return None
        self._cache(case, vector, context)
        return vector

    def case_vectors(
        self, cases: Sequence[MedicalCase], context: RequestContext | None = None
    ) -> dict[str, Optional[list[float]]]:
        result: dict[str, Optional[list[float]]] = {
            case.id: case.embedding for case in cases if case.embedding
        }
        pending = [case for case in cases if not case.embedding]
        if not pending:
            return result
        texts = [self.case_text(case, context) for case in pending]
        try:
            vectors = self.embed_batch(texts, context)
        except EmbeddingError as exc:
            context_logger(logger, context).warning(
                "Batch embedding unavailable for %s cases: %s", len(pending), exc
            )
            result.update({case.id: None for case in pending})
            return result
        for case, vector in zip(pending, vectors):
            self._cache(case, vector, context)
            result[case.id] = vector
        return result

    def similarity(
        self,
        case_vector: Optional[Sequence[float]],
        candidate_vectors: Sequence[Optional[Sequence[float]]],
    ) -> Optional[float]:
        if not case_vector:
            return None
        present = [vector for vector in candidate_vectors if vector]
        if not present:
            return None
        mean = sum(cosine_similarity(case_vector, vector) for vector in present) / len(present)
        return min(1.0, max(0.0, mean))

    def _cache(
        self, case: MedicalCase, vector: list[float], context: RequestContext | None
    ) -> None:
        case.embedding = vector
        if self.repository is None:
            return
        try:
            self.repository.save_case_embedding(case.id, vector)
        except Exception as exc:
            context_logger(logger, context).warning(
                "Could not persist embedding for case %s: %s", case.id, exc
            )
