from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Executor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional

from .errors import JobStateError
from .ids import IdGenerator, ObjectIdGenerator

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class JobState(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobKind(str, Enum):
    MATCH_DOCTORS = "match"
    ROUTE_FACILITIES = "route"
    PRIORITIZE = "prioritize"


@dataclass(frozen=True)
class Job:
    job_id: str
    kind: JobKind
    state: JobState = JobState.PENDING
    result: Any = None
    error_message: Optional[str] = None
    created_at: float = 0.0

    @property
    def terminal(self) -> bool:
        return self.state is not JobState.PENDING


class AsyncJobRegistry:
    """Bounded in-memory job map; the oldest-created jobs are evicted first."""

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        id_generator: IdGenerator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._ids = id_generator or ObjectIdGenerator()
        self._clock = clock
        self._jobs: OrderedDict[str, Job] = OrderedDict()
        self._lock = threading.Lock()

    def create(self, kind: JobKind | str = JobKind.MATCH_DOCTORS) -> str:
        job_kind = JobKind(kind)
        job_id = f"{job_kind.value}-{self._ids.next()}"
        with self._lock:
            self._jobs[job_id] = Job(job_id=job_id, kind=job_kind, created_at=self._clock())
            while len(self._jobs) > self.capacity:
                evicted, _ = self._jobs.popitem(last=False)
                logger.debug("Evicted job %s", evicted)
        return job_id

    def complete(self, job_id: str, result: Any) -> Job:
        return self._finish(job_id, state=JobState.COMPLETED, result=result)

    def fail(self, job_id: str, message: str) -> Job:
        return self._finish(job_id, state=JobState.FAILED, error_message=message)

    def status(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def counts(self) -> dict[str, int]:
        with self._lock:
            totals = {state.value: 0 for state in JobState}
            for job in self._jobs.values():
                totals[job.state.value] += 1
        return totals

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _finish(
        self,
        job_id: str,
        *,
        state: JobState,
        result: Any = None,
        error_message: str | None = None,
    ) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobStateError(f"Unknown or evicted job: {job_id}")
            if job.terminal:
                raise JobStateError(f"Job {job_id} is already {job.state.value}")
            updated = replace(job, state=state, result=result, error_message=error_message)
            self._jobs[job_id] = updated
        return updated


@dataclass
class JobRunner:
    registry: AsyncJobRegistry
    executor: Executor

    def submit(self, kind: JobKind | str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        job_id = self.registry.create(kind)
        try:
            self.executor.submit(self._run, job_id, fn, args, kwargs)
        except Exception as exc:
            logger.warning("Job %s could not be scheduled: %s", job_id, exc)
            self._record(job_id, self.registry.fail, str(exc) or exc.__class__.__name__)
            raise
        return job_id

    def _run(self, job_id: str, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            logger.warning("Job %s failed: %s", job_id, exc)
            self._record(job_id, self.registry.fail, str(exc) or exc.__class__.__name__)
            return
        self._record(job_id, self.registry.complete, result)

    @staticmethod
    def _record(job_id: str, transition: Callable[[str, Any], Job], value: Any) -> None:
        try:
            transition(job_id, value)
        except JobStateError as exc:
            logger.info("Job %s result dropped: %s", job_id, exc)
