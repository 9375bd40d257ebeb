from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field

from .errors import RequestCancelledError


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block up to ``timeout`` seconds; True once cancelled."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, message: str = "Request was cancelled.") -> None:
        if self._event.is_set():
            raise RequestCancelledError(message)


@dataclass
class RequestContext:
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def check(self) -> None:
        self.cancel_token.raise_if_cancelled(
            f"Request {self.correlation_id} was cancelled."
        )


def ensure_context(context: RequestContext | None) -> RequestContext:
    return context if context is not None else RequestContext()
