from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_limit(name: str, default: int | None) -> int | None:
    """Concurrency limit; zero or negative means unbounded."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else None


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_csv(name: str, default: list[str] | None = None) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default or [])
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_weights(name: str, default: dict[str, float]) -> dict[str, float]:
    """Parse ``key=value`` pairs, e.g. ``vector=0.5,graph=0.3,historical=0.2``."""
    raw = os.getenv(name)
    if raw is None:
        return dict(default)
    weights = dict(default)
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        key = key.strip().lower()
        if not sep or key not in weights:
            continue
        try:
            weights[key] = max(0.0, float(value))
        except ValueError:
            continue
    return weights


@dataclass
class MatchConfig:
    db_path: str = field(default_factory=lambda: os.getenv("EXPERT_MATCH_DB_PATH", "expert_match.db"))
    log_level: str = "INFO"
    describer_mode: str = field(
        default_factory=lambda: os.getenv("EXPERT_MATCH_DESCRIBER_MODE", "structured")
    )
    embedding_mode: str = field(
        default_factory=lambda: os.getenv("EXPERT_MATCH_EMBEDDING_MODE", "openai")
    )
    openai_model: str = field(default_factory=lambda: os.getenv("EXPERT_MATCH_OPENAI_MODEL", "gpt-4o-mini"))
    openai_embedding_model: str = "text-embedding-3-small"
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_timeout_seconds: float = 20.0
    openai_max_output_tokens: int = 400
    gemini_model: str = field(
        default_factory=lambda: os.getenv("EXPERT_MATCH_GEMINI_MODEL", "gemini-2.5-flash")
    )
    gemini_embedding_model: str = "gemini-embedding-001"
    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_max_output_tokens: int = 400
    embedding_dimensions: int | None = None

    chat_concurrency: int | None = 10
    embedding_concurrency: int | None = 10
    reranking_concurrency: int | None = 10
    tool_calling_concurrency: int | None = 10

    retry_max_retries: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_multiplier: float = 2.0
    retry_max_delay_seconds: float = 10.0

    max_workers: int = 8
    job_workers: int = 4
    job_capacity: int = 100

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
    similar_cases_saturation: int = 5
    related_specialty_score: float = 0.5
    default_max_distance_km: float = 500.0
    critical_care_capabilities: list[str] = field(default_factory=lambda: ["ICU", "INTENSIVE CARE"])

    candidate_pool_multiplier: int = 2
    minimum_candidate_pool: int = 50
    facility_doctor_limit: int = 500
    open_consult_limit: int = 200
    persist_matches: bool = True

    @classmethod
    def from_env(cls) -> "MatchConfig":
        cfg = cls()
        cfg.log_level = _env_str("EXPERT_MATCH_LOG_LEVEL", cfg.log_level).upper()
        cfg.describer_mode = _env_str("EXPERT_MATCH_DESCRIBER_MODE", cfg.describer_mode).lower()
        cfg.embedding_mode = _env_str("EXPERT_MATCH_EMBEDDING_MODE", cfg.embedding_mode).lower()
        cfg.openai_model = _env_str("EXPERT_MATCH_OPENAI_MODEL", cfg.openai_model)
        cfg.openai_embedding_model = _env_str(
            "EXPERT_MATCH_OPENAI_EMBEDDING_MODEL",
            cfg.openai_embedding_model,
        )
        cfg.openai_api_key = _env_str("OPENAI_API_KEY", cfg.openai_api_key)
        cfg.openai_timeout_seconds = _env_float(
            "EXPERT_MATCH_OPENAI_TIMEOUT_SECONDS",
            cfg.openai_timeout_seconds,
        )
        cfg.openai_max_output_tokens = _env_int(
            "EXPERT_MATCH_OPENAI_MAX_OUTPUT_TOKENS",
            cfg.openai_max_output_tokens,
        )
        cfg.gemini_model = _env_str("EXPERT_MATCH_GEMINI_MODEL", cfg.gemini_model)
        cfg.gemini_embedding_model = _env_str(
            "EXPERT_MATCH_GEMINI_EMBEDDING_MODEL",
            cfg.gemini_embedding_model,
        )
        cfg.gemini_api_key = _env_str("GEMINI_API_KEY", cfg.gemini_api_key)
        cfg.gemini_max_output_tokens = _env_int(
            "EXPERT_MATCH_GEMINI_MAX_OUTPUT_TOKENS",
            cfg.gemini_max_output_tokens,
        )
        dimensions = _env_int("EXPERT_MATCH_EMBEDDING_DIMENSIONS", 0)
        cfg.embedding_dimensions = dimensions if dimensions > 0 else cfg.embedding_dimensions

        cfg.chat_concurrency = _env_limit("EXPERT_MATCH_CHAT_CONCURRENCY", cfg.chat_concurrency)
        cfg.embedding_concurrency = _env_limit(
            "EXPERT_MATCH_EMBEDDING_CONCURRENCY",
            cfg.embedding_concurrency,
        )
        cfg.reranking_concurrency = _env_limit(
            "EXPERT_MATCH_RERANKING_CONCURRENCY",
            cfg.reranking_concurrency,
        )
        cfg.tool_calling_concurrency = _env_limit(
            "EXPERT_MATCH_TOOL_CALLING_CONCURRENCY",
            cfg.tool_calling_concurrency,
        )

        cfg.retry_max_retries = max(0, _env_int("EXPERT_MATCH_RETRY_MAX_RETRIES", cfg.retry_max_retries))
        cfg.retry_initial_delay_seconds = _env_float(
            "EXPERT_MATCH_RETRY_INITIAL_DELAY_SECONDS",
            cfg.retry_initial_delay_seconds,
        )
        cfg.retry_multiplier = _env_float("EXPERT_MATCH_RETRY_MULTIPLIER", cfg.retry_multiplier)
        cfg.retry_max_delay_seconds = _env_float(
            "EXPERT_MATCH_RETRY_MAX_DELAY_SECONDS",
            cfg.retry_max_delay_seconds,
        )

        cfg.max_workers = max(1, _env_int("EXPERT_MATCH_MAX_WORKERS", cfg.max_workers))
        cfg.job_workers = max(1, _env_int("EXPERT_MATCH_JOB_WORKERS", cfg.job_workers))
        cfg.job_capacity = max(1, _env_int("EXPERT_MATCH_JOB_CAPACITY", cfg.job_capacity))

        cfg.doctor_weights = _env_weights("EXPERT_MATCH_DOCTOR_WEIGHTS", cfg.doctor_weights)
        cfg.route_weights = _env_weights("EXPERT_MATCH_ROUTE_WEIGHTS", cfg.route_weights)
        cfg.priority_weights = _env_weights("EXPERT_MATCH_PRIORITY_WEIGHTS", cfg.priority_weights)
        cfg.similar_cases_saturation = max(
            1,
            _env_int("EXPERT_MATCH_SIMILAR_CASES_SATURATION", cfg.similar_cases_saturation),
        )
        cfg.related_specialty_score = _env_float(
            "EXPERT_MATCH_RELATED_SPECIALTY_SCORE",
            cfg.related_specialty_score,
        )
        cfg.default_max_distance_km = _env_float(
            "EXPERT_MATCH_DEFAULT_MAX_DISTANCE_KM",
            cfg.default_max_distance_km,
        )
        cfg.critical_care_capabilities = _env_csv(
            "EXPERT_MATCH_CRITICAL_CARE_CAPABILITIES",
            cfg.critical_care_capabilities,
        )
        cfg.candidate_pool_multiplier = max(
            1,
            _env_int("EXPERT_MATCH_CANDIDATE_POOL_MULTIPLIER", cfg.candidate_pool_multiplier),
        )
        cfg.minimum_candidate_pool = _env_int(
            "EXPERT_MATCH_MINIMUM_CANDIDATE_POOL",
            cfg.minimum_candidate_pool,
        )
        cfg.persist_matches = _env_bool("EXPERT_MATCH_PERSIST_MATCHES", cfg.persist_matches)
        return cfg

    def concurrency_limits(self) -> dict[str, int | None]:
        return {
            "CHAT": self.chat_concurrency,
            "EMBEDDING": self.embedding_concurrency,
            "RERANKING": self.reranking_concurrency,
            "TOOL_CALLING": self.tool_calling_concurrency,
        }
