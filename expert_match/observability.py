from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .context import RequestContext

if TYPE_CHECKING:
    from .admission import AdmissionControl
    from .jobs import AsyncJobRegistry


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _CorrelationDefault) for f in handler.filters):
            handler.addFilter(_CorrelationDefault())


class _CorrelationDefault(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class CorrelationAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("correlation_id", self.extra["correlation_id"])
        kwargs["extra"] = extra
        return msg, kwargs


def context_logger(logger: logging.Logger, context: RequestContext | None) -> CorrelationAdapter:
    correlation_id = context.correlation_id if context is not None else "-"
    return CorrelationAdapter(logger, {"correlation_id": correlation_id})


@dataclass
class Observability:
    admission: AdmissionControl
    jobs: AsyncJobRegistry

    def snapshot(self) -> dict[str, Any]:
        return {
            "admission": self.admission.stats(),
            "jobs": self.jobs.counts(),
        }
