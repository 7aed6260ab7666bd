"""Identifiers of the current run that have not reported yet."""

from __future__ import annotations

from typing import Iterable


class CompletionTracker:
    """The running set. It only shrinks during a run and is replaced at run start."""

    def __init__(self):
        self._running: set[str] = set()

    def initialize(self, ids: Iterable[str]) -> None:
        self._running = set(ids)

    def mark_done(self, ids: Iterable[str]) -> None:
        for sandbox_id in ids:
            self._running.discard(sandbox_id)

    def mark_all_done(self) -> None:
        self._running.clear()

    def is_empty(self) -> bool:
        return not self._running

    @property
    def running(self) -> frozenset[str]:
        return frozenset(self._running)

    def __len__(self) -> int:
        return len(self._running)

    def __contains__(self, sandbox_id: str) -> bool:
        return sandbox_id in self._running
