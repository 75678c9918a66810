from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from roster_monitor.models import Worker
from roster_monitor.settings import get_settings

_MISSING = object()


@dataclass(frozen=True, slots=True)
class WorkerContact:
    id: str
    name: str
    phone: str | None


class WorkerDirectory:
    """Read-only lookup of worker identity and contact details."""

    def get_worker(self, worker_id: str) -> WorkerContact | None:
        raise NotImplementedError


class SqlWorkerDirectory(WorkerDirectory):
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_worker(self, worker_id: str) -> WorkerContact | None:
        worker = self.db.get(Worker, worker_id)
        if worker is None:
            return None
        return WorkerContact(id=worker.id, name=worker.full_name, phone=worker.phone)


class TtlCache:
    """Bounded, time-limited mapping owned by whoever constructs it."""

    def __init__(
        self,
        *,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[Any, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Any, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return default
            self._entries.move_to_end(key)
            return value

    def set(self, key: Any, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, key: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CachedWorkerDirectory(WorkerDirectory):
    def __init__(self, directory: WorkerDirectory, cache: TtlCache) -> None:
        self.directory = directory
        self.cache = cache

    def get_worker(self, worker_id: str) -> WorkerContact | None:
        cached = self.cache.get(worker_id, _MISSING)
        if cached is not _MISSING:
            return cached
        contact = self.directory.get_worker(worker_id)
        self.cache.set(worker_id, contact)
        return contact


def build_worker_cache() -> TtlCache:
    settings = get_settings()
    return TtlCache(
        max_entries=max(1, int(settings.worker_cache_max_entries)),
        ttl_seconds=max(0, int(settings.worker_cache_ttl_seconds)),
    )
