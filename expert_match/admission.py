from __future__ import annotations

import logging
import sys
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import MatchConfig
from .context import CancellationToken, RequestContext
from .errors import (
    AdmissionInterruptedError,
    RequestCancelledError,
    RetryInterruptedError,
)
from .observability import context_logger

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNBOUNDED_PERMITS = sys.maxsize
DEFAULT_LIMIT = 10


class ResourceCategory(str, Enum):
    CHAT = "CHAT"
    EMBEDDING = "EMBEDDING"
    RERANKING = "RERANKING"
    TOOL_CALLING = "TOOL_CALLING"


class FairSemaphore:
    """Counting semaphore that grants permits strictly in arrival order."""

    def __init__(self, limit: int | None, *, poll_interval: float = 0.05) -> None:
        self.limit = limit
        self._available = limit if limit is not None else UNBOUNDED_PERMITS
        self._poll_interval = poll_interval
        self._cond = threading.Condition()
        self._queue: deque[object] = deque()
        self._in_flight = 0
        self._peak = 0

    def acquire(self, cancel_token: CancellationToken | None = None) -> None:
        ticket = object()
        with self._cond:
            self._queue.append(ticket)
            try:
                while self._queue[0] is not ticket or self._available <= 0:
                    if cancel_token is not None and cancel_token.cancelled:
                        raise AdmissionInterruptedError("Interrupted while waiting for a permit.")
                    self._cond.wait(self._poll_interval if cancel_token is not None else None)
            except BaseException:
                self._queue.remove(ticket)
                self._cond.notify_all()
                raise
            self._queue.popleft()
            self._available -= 1
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            self._available += 1
            self._in_flight -= 1
            self._cond.notify_all()

    def stats(self) -> dict[str, Any]:
        with self._cond:
            return {
                "limit": self.limit,
                "in_flight": self._in_flight,
                "waiting": len(self._queue),
                "peak_in_flight": self._peak,
            }


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: MatchConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.retry_max_retries,
            initial_delay=config.retry_initial_delay_seconds,
            multiplier=config.retry_multiplier,
            max_delay=config.retry_max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failure (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


_NEVER_RETRY = (AdmissionInterruptedError, RetryInterruptedError, RequestCancelledError)


def _interruptible_sleep(cancel_token: CancellationToken | None) -> Callable[[float], None]:
    def _sleep(seconds: float) -> None:
        if cancel_token is None:
            time.sleep(seconds)
            return
        if cancel_token.wait(seconds):
            raise RetryInterruptedError("Interrupted during retry backoff.")

    return _sleep


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    context: RequestContext | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] | None = None,
) -> T:
    log = context_logger(logger, context)

    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.warning(
            "Attempt %s/%s failed: %s; retrying in %.2fs",
            retry_state.attempt_number,
            max_retries + 1,
            exc,
            delay,
        )

    retrying = Retrying(
        stop=stop_after_attempt(max(0, max_retries) + 1),
        wait=wait_exponential(multiplier=initial_delay, exp_base=multiplier, min=0, max=max_delay),
        retry=retry_if_exception_type(retry_on) & retry_if_not_exception_type(_NEVER_RETRY),
        sleep=sleep or _interruptible_sleep(context.cancel_token if context else None),
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(operation)


class AdmissionControl:
    def __init__(self, limits: Mapping[ResourceCategory | str, int | None] | None = None) -> None:
        resolved: dict[ResourceCategory, int | None] = {
            category: DEFAULT_LIMIT for category in ResourceCategory
        }
        for key, value in (limits or {}).items():
            resolved[ResourceCategory(key)] = value if value is None or value > 0 else None
        self._semaphores = {
            category: FairSemaphore(limit) for category, limit in resolved.items()
        }

    @classmethod
    def from_config(cls, config: MatchConfig) -> "AdmissionControl":
        return cls(config.concurrency_limits())

    def run(
        self,
        category: ResourceCategory | str,
        operation: Callable[[], T],
        *,
        context: RequestContext | None = None,
    ) -> T:
        semaphore = self._semaphores[ResourceCategory(category)]
        semaphore.acquire(context.cancel_token if context is not None else None)
        try:
            return operation()
        finally:
            semaphore.release()

    def run_with_retry(
        self,
        category: ResourceCategory | str,
        operation: Callable[[], T],
        *,
        policy: RetryPolicy,
        context: RequestContext | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> T:
        # Each attempt takes its own permit; backoff sleeps hold none.
        return retry_with_backoff(
            lambda: self.run(category, operation, context=context),
            max_retries=policy.max_retries,
            initial_delay=policy.initial_delay,
            multiplier=policy.multiplier,
            max_delay=policy.max_delay,
            context=context,
            sleep=sleep,
        )

    def stats(self) -> dict[str, dict[str, Any]]:
        return {category.value: sem.stats() for category, sem in self._semaphores.items()}
