"""Execution guard: per-entry admission control.

Each entry owns exactly one ``ExecutionGuard``. Whenever a message arrives
for the entry's topic the guard decides whether a new invocation may start:

    try_begin()  ─ ADMITTED: in-flight count incremented, caller must end()
                 ─ SKIPPED:  non-concurrent entry already running, drop
    end()        ─ release one admitted invocation

The lock only ever protects the check-and-set of the run state; it is never
held while the command itself runs. A long-running command therefore only
causes later triggers of the same (non-concurrent) entry to be skipped. It
never stalls other entries, and it never stalls the next admission check.

Example::

    guard = ExecutionGuard("build", allow_concurrent=False)
    with guard.admitted() as ok:
        if ok:
            run_command()
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum


class RunState(str, Enum):
    """Whether an entry currently has an invocation in flight."""

    IDLE = "idle"
    RUNNING = "running"


class Admission(str, Enum):
    """Result of an admission check."""

    ADMITTED = "admitted"
    SKIPPED = "skipped"


class ExecutionGuard:
    """Serializes admission decisions for one entry's invocations.

    For ``allow_concurrent=False`` at most one invocation is ever in
    flight. For ``allow_concurrent=True`` every trigger is admitted; the
    in-flight count and ``state`` are status only, never used for exclusion.
    """

    def __init__(self, name: str, allow_concurrent: bool = False) -> None:
        self.name = name
        self.allow_concurrent = allow_concurrent
        self._lock = threading.Lock()
        self._in_flight = 0

    def try_begin(self) -> Admission:
        """Admit a new invocation or skip it."""
        with self._lock:
            if not self.allow_concurrent and self._in_flight:
                return Admission.SKIPPED
            self._in_flight += 1
            return Admission.ADMITTED

    def end(self) -> None:
        """Release one admitted invocation.

        Never drops below zero, so a stray extra call leaves an idle guard
        idle.
        """
        with self._lock:
            if self._in_flight:
                self._in_flight -= 1

    @contextmanager
    def admitted(self) -> Iterator[bool]:
        """Admission as a context manager.

        Yields True when admitted and calls ``end()`` exactly once on exit,
        exceptions included. Yields False when skipped; nothing to release.
        """
        if self.try_begin() is Admission.SKIPPED:
            yield False
            return
        try:
            yield True
        finally:
            self.end()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def state(self) -> RunState:
        with self._lock:
            return RunState.RUNNING if self._in_flight else RunState.IDLE

    @property
    def executing(self) -> bool:
        return self.state is RunState.RUNNING

    def __repr__(self) -> str:
        return (
            f"ExecutionGuard({self.name!r}, allow_concurrent={self.allow_concurrent}, "
            f"state={self.state.value})"
        )
