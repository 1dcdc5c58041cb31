"""Backend availability tracking.

Probes every registered adapter once at startup and then on a fixed interval.
Each backend owns exactly one :class:`AdapterHealth` record, and only the
monitor replaces it; callers get immutable snapshots.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
import logging
import time
from typing import Any

from .adapters.base import DISPLAY_NAMES, Adapter
from .events.bus import HEALTH_CHANGED, EventBus
from .exceptions import UnknownBackendError
from .outcome import ErrorKind, RequestOutcome
from .registry import ServiceRecord, ServiceRegistry
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
SCHEDULER_TASK = "health.scheduler"

StateChangeCallback = Callable[[str, "HealthStatus", "HealthStatus"], Any]


class HealthStatus(str, Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class AdapterHealth:
    backend_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    last_checked_at: datetime | None = None
    last_latency_ms: float | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class _Registration:
    adapter: Adapter[Any, Any]
    name: str
    url: str


class HealthMonitor:
    """Probe backends independently and keep their availability current.

    Probes for different backends run concurrently. A check requested while
    the same backend is already ``checking`` awaits the in-flight probe
    instead of starting another one.
    """

    def __init__(
        self,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        *,
        registry: ServiceRegistry | None = None,
        bus: EventBus | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.interval_seconds = interval_seconds
        self.registry = registry
        self.bus = bus
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._registrations: dict[str, _Registration] = {}
        self._health: dict[str, AdapterHealth] = {}
        self._tasks = TaskManager()
        self._on_state_change: list[StateChangeCallback] = []

    def register(
        self,
        adapter: Adapter[Any, Any],
        *,
        name: str | None = None,
        url: str | None = None,
    ) -> None:
        """Add a backend; its status starts as ``unknown`` until first probed."""
        backend_id = adapter.backend_id
        if backend_id in self._registrations:
            raise ValueError(f"Backend {backend_id!r} is already registered.")
        transport = getattr(adapter, "transport", None)
        self._registrations[backend_id] = _Registration(
            adapter=adapter,
            name=name or DISPLAY_NAMES.get(adapter.kind, backend_id),
            url=url or getattr(transport, "base_url", ""),
        )
        self._health[backend_id] = AdapterHealth(backend_id=backend_id)

    @property
    def backend_ids(self) -> list[str]:
        return list(self._registrations)

    def display_name(self, backend_id: str) -> str:
        registration = self._registrations.get(backend_id)
        return registration.name if registration else backend_id

    def snapshot(self) -> dict[str, AdapterHealth]:
        """Return the current record of every backend."""
        return dict(self._health)

    def health(self, backend_id: str) -> AdapterHealth:
        try:
            return self._health[backend_id]
        except KeyError:
            raise UnknownBackendError(f"Backend {backend_id!r} is not registered.") from None

    def is_offline(self, backend_id: str) -> bool:
        """True only when the latest finished probe of a known backend failed."""
        record = self._health.get(backend_id)
        return record is not None and record.status is HealthStatus.OFFLINE

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """Register ``callback(backend_id, old_status, new_status)``."""
        self._on_state_change.append(callback)

    async def check(self, backend_id: str) -> AdapterHealth:
        """Probe one backend, joining a probe that is already in flight."""
        if backend_id not in self._registrations:
            raise UnknownBackendError(f"Backend {backend_id!r} is not registered.")
        task_name = f"health.probe.{backend_id}"
        task = self._tasks.get(task_name)
        if task is None or task.done():
            task = self._tasks.spawn(self._probe(backend_id), task_name)
        # A cancelled waiter must not abort a probe other callers share.
        return await asyncio.shield(task)

    async def check_all(self) -> dict[str, AdapterHealth]:
        """Probe every backend concurrently and return the resulting snapshot."""
        results = await asyncio.gather(
            *(self.check(backend_id) for backend_id in self._registrations),
            return_exceptions=True,
        )
        for backend_id, result in zip(self._registrations, results):
            if isinstance(result, BaseException) and not isinstance(
                result, asyncio.CancelledError
            ):
                LOGGER.error(
                    "health.check.failed",
                    extra={
                        "event": "health.check.failed",
                        "backend_id": backend_id,
                        "error": str(result),
                    },
                )
        return self.snapshot()

    async def start(self) -> None:
        """Begin the probe schedule; the first round runs immediately."""
        if self._tasks.running(SCHEDULER_TASK):
            return
        self._tasks.spawn(self._schedule(), SCHEDULER_TASK)
        LOGGER.info(
            "health.monitor.started",
            extra={
                "event": "health.monitor.started",
                "interval_seconds": self.interval_seconds,
                "backends": self.backend_ids,
            },
        )

    async def stop(self) -> None:
        """Stop the schedule and abandon any in-flight probes."""
        await self._tasks.cancel_all()
        LOGGER.info("health.monitor.stopped", extra={"event": "health.monitor.stopped"})

    @property
    def running(self) -> bool:
        return self._tasks.running(SCHEDULER_TASK)

    async def _schedule(self) -> None:
        while True:
            await self.check_all()
            await self._sleep(self.interval_seconds)

    async def _probe(self, backend_id: str) -> AdapterHealth:
        registration = self._registrations[backend_id]
        previous = self._health[backend_id]
        await self._store(
            AdapterHealth(
                backend_id=backend_id,
                status=HealthStatus.CHECKING,
                last_checked_at=previous.last_checked_at,
                last_latency_ms=previous.last_latency_ms,
                last_error=previous.last_error,
            )
        )

        started = self._clock()
        try:
            outcome = await registration.adapter.probe()
        except asyncio.CancelledError:
            # An abandoned probe leaves the last finished result in place.
            await self._store(previous)
            raise
        except Exception as exc:  # noqa: BLE001
            LOGGER.error(
                "health.probe.raised",
                extra={
                    "event": "health.probe.raised",
                    "backend_id": backend_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            outcome = RequestOutcome.failure(ErrorKind.NETWORK_ERROR, str(exc))
        latency_ms = round((self._clock() - started) * 1000.0, 3)

        record = AdapterHealth(
            backend_id=backend_id,
            status=HealthStatus.ONLINE if outcome.ok else HealthStatus.OFFLINE,
            last_checked_at=self._now(),
            last_latency_ms=latency_ms if outcome.ok else None,
            last_error=None if outcome.ok else outcome.describe(),
        )
        await self._store(record)
        await self._write_registry(registration, record)
        return record

    async def _store(self, record: AdapterHealth) -> None:
        old = self._health[record.backend_id].status
        self._health[record.backend_id] = record
        if old is record.status:
            return
        LOGGER.info(
            "health.status.changed",
            extra={
                "event": "health.status.changed",
                "backend_id": record.backend_id,
                "old": old.value,
                "new": record.status.value,
            },
        )
        for callback in list(self._on_state_change):
            try:
                result = callback(record.backend_id, old, record.status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                LOGGER.error(
                    "health.callback.failed",
                    extra={"event": "health.callback.failed", "error": str(exc)},
                )
        if self.bus is not None:
            await self.bus.publish(
                HEALTH_CHANGED,
                {
                    "backend_id": record.backend_id,
                    "old": old.value,
                    "new": record.status.value,
                },
                source="health",
            )

    async def _write_registry(self, registration: _Registration, record: AdapterHealth) -> None:
        if self.registry is None:
            return
        try:
            await self.registry.upsert(
                ServiceRecord(
                    backend_id=record.backend_id,
                    name=registration.name,
                    url=registration.url,
                    status=record.status.value,
                    last_checked_at=record.last_checked_at,
                    last_latency_ms=record.last_latency_ms,
                )
            )
        except Exception as exc:
            LOGGER.warning(
                "health.registry.write_failed",
                extra={
                    "event": "health.registry.write_failed",
                    "backend_id": record.backend_id,
                    "error": str(exc),
                },
            )
