"""Persistence for deep-scan records and quota counters."""

import asyncio
import copy
import time
from abc import ABC, abstractmethod
from typing import Any, Callable

from .errors import ScanNotFound, ScanRecordLocked
from .models import TERMINAL_STATUSES, ScanRequest


class ScanStore(ABC):
    """Keyed storage for scan requests and their results."""

    @abstractmethod
    async def create(self, record: ScanRequest) -> ScanRequest:
        """Persist a new record."""

    @abstractmethod
    async def get(self, request_id: str) -> ScanRequest:
        """Return a copy of the record. Raises ScanNotFound."""

    @abstractmethod
    async def update(self, request_id: str, **changes: Any) -> ScanRequest:
        """Replace the given fields and return the updated record.

        Raises ScanNotFound, or ScanRecordLocked when the record is
        already completed or failed.
        """


class InMemoryScanStore(ScanStore):
    """Process-local store. Records are copied in and out so callers never share state."""

    def __init__(self):
        self._records: dict[str, ScanRequest] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: ScanRequest) -> ScanRequest:
        async with self._lock:
            self._records[record.id] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def get(self, request_id: str) -> ScanRequest:
        record = self._records.get(request_id)
        if record is None:
            raise ScanNotFound(request_id)
        return record.model_copy(deep=True)

    async def update(self, request_id: str, **changes: Any) -> ScanRequest:
        unknown = set(changes) - set(ScanRequest.model_fields)
        if unknown:
            raise ValueError(f"Unknown scan request fields: {sorted(unknown)}")

        async with self._lock:
            record = self._records.get(request_id)
            if record is None:
                raise ScanNotFound(request_id)
            if record.status in TERMINAL_STATUSES:
                raise ScanRecordLocked(request_id, record.status.value)

            updated = record.model_copy(deep=True)
            for field, value in changes.items():
                setattr(updated, field, copy.deepcopy(value))
            self._records[request_id] = updated
            return updated.model_copy(deep=True)


class QuotaStore(ABC):
    """Counters that expire after a time window."""

    @abstractmethod
    async def get(self, key: str) -> int:
        """Current count for ``key`` (0 when unknown or expired)."""

    @abstractmethod
    async def increment(self, key: str, window: int) -> int:
        """Add one to ``key``, starting a ``window``-second window if none is open; return the new count."""


class InMemoryQuotaStore(QuotaStore):
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> tuple[int, float]:
        count, expires_at = self._counters.get(key, (0, 0.0))
        if expires_at <= self._clock():
            self._counters.pop(key, None)
            return 0, 0.0
        return count, expires_at

    async def get(self, key: str) -> int:
        async with self._lock:
            return self._live(key)[0]

    async def increment(self, key: str, window: int) -> int:
        async with self._lock:
            count, expires_at = self._live(key)
            if count == 0:
                expires_at = self._clock() + window
            self._counters[key] = (count + 1, expires_at)
            return count + 1
