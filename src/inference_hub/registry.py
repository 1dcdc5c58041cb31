"""Service registry collaborator: records keyed by backend id.

The hub only reads and writes through the :class:`ServiceRegistry`
protocol; where the records actually live is up to the host. The in-memory
implementation backs tests and the CLI.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Protocol

LOGGER = logging.getLogger(__name__)

RecordListener = Callable[["ServiceRecord"], None]


@dataclass(frozen=True)
class ServiceRecord:
    backend_id: str
    name: str
    url: str
    status: str = "unknown"
    last_checked_at: datetime | None = None
    last_latency_ms: float | None = None


class ServiceRegistry(Protocol):
    async def get(self, backend_id: str) -> ServiceRecord | None: ...

    async def list(self) -> list[ServiceRecord]: ...

    async def upsert(self, record: ServiceRecord) -> ServiceRecord: ...

    async def delete(self, backend_id: str) -> None: ...

    def subscribe(self, listener: RecordListener) -> None: ...


class InMemoryServiceRegistry:
    """Dictionary-backed registry that notifies listeners on every change."""

    def __init__(self) -> None:
        self._records: dict[str, ServiceRecord] = {}
        self._listeners: list[RecordListener] = []
        self._lock = asyncio.Lock()

    async def get(self, backend_id: str) -> ServiceRecord | None:
        return self._records.get(backend_id)

    async def list(self) -> list[ServiceRecord]:
        return sorted(self._records.values(), key=lambda record: record.name)

    async def upsert(self, record: ServiceRecord) -> ServiceRecord:
        async with self._lock:
            previous = self._records.get(record.backend_id)
            self._records[record.backend_id] = record
        if previous != record:
            self._notify(record)
        return record

    async def delete(self, backend_id: str) -> None:
        async with self._lock:
            self._records.pop(backend_id, None)

    def subscribe(self, listener: RecordListener) -> None:
        self._listeners.append(listener)

    def _notify(self, record: ServiceRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as exc:
                LOGGER.error(
                    "registry.listener.failed",
                    extra={
                        "event": "registry.listener.failed",
                        "backend_id": record.backend_id,
                        "error": str(exc),
                    },
                )
