"""
Backend adapter contract.

A backend wraps one external system (a database, a cloud API, an HTTP
service). Tool handlers call its methods; each method performs one logical
unit of work, reshapes the native response into plain Python data and
raises a BackendError subclass on failure.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator


class Backend(ABC):
    """Base class for backend adapters."""

    # Human-readable system name used in log lines
    display_name: str = "backend"

    @abstractmethod
    async def test_connection(self) -> bool:
        """Probe the backend once at startup. True means reachable."""
        ...

    async def close(self) -> None:
        """Release long-lived clients. Safe to call more than once."""


class Stopwatch:
    """Elapsed wall-clock milliseconds for one backend call."""

    def __init__(self):
        self._start = time.perf_counter()
        self.elapsed_ms = 0

    def stop(self) -> int:
        self.elapsed_ms = round((time.perf_counter() - self._start) * 1000)
        return self.elapsed_ms


@contextmanager
def timed() -> Iterator[Stopwatch]:
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.stop()
