from __future__ import annotations

import os
import secrets
import threading
import time
from typing import Callable, Protocol


class IdGenerator(Protocol):
    def next(self) -> str:
        ...


class ObjectIdGenerator:
    """24-hex identifiers: 4-byte seconds, 3-byte machine, 2-byte process, 3-byte counter."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        machine_id: int | None = None,
        process_id: int | None = None,
    ) -> None:
        self._clock = clock
        self._machine = (machine_id if machine_id is not None else secrets.randbits(24)) & 0xFFFFFF
        self._process = (process_id if process_id is not None else os.getpid()) & 0xFFFF
        self._counter = secrets.randbits(24)
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            self._counter = (self._counter + 1) & 0xFFFFFF
            counter = self._counter
        timestamp = int(self._clock()) & 0xFFFFFFFF
        return f"{timestamp:08x}{self._machine:06x}{self._process:04x}{counter:06x}"


class SequentialIdGenerator:
    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self._value = 0
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            self._value += 1
            return f"{self.prefix}-{self._value:06d}"


def is_object_id(value: str) -> bool:
    if len(value) != 24:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True
