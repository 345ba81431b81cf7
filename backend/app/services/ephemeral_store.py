"""Bounded-retention in-memory stores for previews and progress records."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Generic, Literal, TypeVar

from app.ai.provider_interface import ProgressCallback
from app.models.base import utc_now

T = TypeVar("T")

ProgressPhase = Literal["classifying", "relationships", "complete", "failed"]

PROGRESS_RETENTION = timedelta(minutes=10)


class EphemeralStore(Generic[T]):
    """Thread-safe key/value store whose entries expire after a fixed TTL.

    Expired entries read as missing. ``sweep`` removes them in bulk; readers
    drop only the entry they touched.
    """

    def __init__(self, ttl: timedelta, clock: Callable[[], datetime] = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[datetime, T]] = {}
        self._lock = threading.Lock()

    def set(self, key: str, value: T, *, refresh: bool = True) -> None:
        """Store ``value``; with ``refresh=False`` an existing entry keeps its original timestamp."""

        with self._lock:
            existing = self._entries.get(key)
            stored_at = existing[0] if existing is not None and not refresh else self._clock()
            self._entries[key] = (stored_at, value)

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry[0]):
                del self._entries[key]
                return None
            return entry[1]

    def pop(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None or self._is_expired(entry[0]):
            return None
        return entry[1]

    def sweep(self) -> int:
        with self._lock:
            expired = [key for key, (stored_at, _) in self._entries.items() if self._is_expired(stored_at)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, stored_at: datetime) -> bool:
        return self._clock() - stored_at >= self._ttl


@dataclass(frozen=True, slots=True)
class OperationProgress:
    operation_id: str
    phase: ProgressPhase
    current: int
    total: int
    current_item: str | None
    started_at: datetime
    error: str | None = None


class ProgressTracker:
    """Progress records for long-running operations, retained for ten minutes from start."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        retention: timedelta = PROGRESS_RETENTION,
    ) -> None:
        self._clock = clock
        self._store: EphemeralStore[OperationProgress] = EphemeralStore(retention, clock)

    def start(self, operation_id: str, total: int, phase: ProgressPhase = "classifying") -> OperationProgress:
        progress = OperationProgress(
            operation_id=operation_id,
            phase=phase,
            current=0,
            total=total,
            current_item=None,
            started_at=self._clock(),
        )
        self._store.set(operation_id, progress)
        return progress

    def update(
        self,
        operation_id: str,
        *,
        phase: ProgressPhase,
        current: int,
        total: int,
        current_item: str | None = None,
    ) -> None:
        existing = self._store.get(operation_id)
        if existing is None:
            return
        self._store.set(
            operation_id,
            replace(existing, phase=phase, current=current, total=total, current_item=current_item),
            refresh=False,
        )

    def complete(self, operation_id: str) -> None:
        existing = self._store.get(operation_id)
        if existing is None:
            return
        self._store.set(
            operation_id,
            replace(existing, phase="complete", current=existing.total, current_item=None),
            refresh=False,
        )

    def fail(self, operation_id: str, error: str) -> None:
        existing = self._store.get(operation_id)
        if existing is None:
            return
        self._store.set(operation_id, replace(existing, phase="failed", error=error), refresh=False)

    def get(self, operation_id: str) -> OperationProgress | None:
        """Return the record, or ``None`` once it was never started or has expired."""

        return self._store.get(operation_id)

    def sweep(self) -> int:
        return self._store.sweep()

    def callback(self, operation_id: str, phase: ProgressPhase) -> ProgressCallback:
        def _on_progress(current: int, total: int, item: str | None) -> None:
            self.update(operation_id, phase=phase, current=current, total=total, current_item=item)

        return _on_progress


@lru_cache(maxsize=1)
def get_progress_tracker() -> ProgressTracker:
    """Return the process-wide progress tracker."""

    return ProgressTracker()
