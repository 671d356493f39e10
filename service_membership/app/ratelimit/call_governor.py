"""
Serializing call governor for the hosted datasheet API.

The datasheet service enforces a hard per-second call quota. Every outbound
call goes through a single FIFO queue drained by one worker task, so at most
one call is in flight and consecutive calls are separated by at least
``1 / max_calls_per_second`` seconds.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar, TYPE_CHECKING

from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")


@dataclass
class QueuedCall:
    """A deferred operation and the future its caller is awaiting."""

    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    name: str = "call"
    enqueued_at: float = field(default_factory=time.monotonic)


class CallGovernor:
    """FIFO, one-at-a-time executor with a minimum spacing between calls."""

    def __init__(self, max_calls_per_second: float, *, metrics: Optional["MetricsCollector"] = None):
        if max_calls_per_second <= 0:
            raise ValueError("max_calls_per_second must be greater than zero")
        self.max_calls_per_second = max_calls_per_second
        self.min_interval = 1.0 / max_calls_per_second
        self.metrics = metrics
        self.logger = get_logger("membership.governor")

        self._queue: Deque[QueuedCall] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._last_settled: Optional[float] = None
        self._dispatched = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        """Number of calls waiting to be dispatched."""
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def enqueue(self, operation: Callable[[], Awaitable[T]], *, name: str = "call") -> T:
        """Queue an operation and wait for its result.

        The returned value, or the exception raised by the operation, is
        exactly what the operation itself produced. Once queued the operation
        runs to completion even if the caller stops waiting.
        """
        loop = asyncio.get_running_loop()
        call = QueuedCall(operation=operation, future=loop.create_future(), name=name)
        self._queue.append(call)
        self._update_depth()
        self._ensure_worker()
        return await call.future

    def stats(self) -> Dict[str, Any]:
        return {
            "max_calls_per_second": self.max_calls_per_second,
            "min_interval_seconds": self.min_interval,
            "pending": self.pending,
            "running": self.is_running,
            "dispatched": self._dispatched,
            "failed": self._failed,
        }

    def _ensure_worker(self) -> None:
        if not self.is_running:
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._queue:
            call = self._queue.popleft()
            self._update_depth()
            try:
                await self._wait_for_slot()
                await self._dispatch(call)
            except asyncio.CancelledError:
                self._cancel_pending(call)
                raise
            finally:
                self._last_settled = time.monotonic()

    async def _wait_for_slot(self) -> None:
        if self._last_settled is None:
            return
        remaining = self._last_settled + self.min_interval - time.monotonic()
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _dispatch(self, call: QueuedCall) -> None:
        started = time.monotonic()
        self._dispatched += 1
        self.logger.debug(
            "Dispatching governed call",
            operation=call.name,
            waited_ms=round((started - call.enqueued_at) * 1000, 2),
            pending=self.pending,
        )

        try:
            result = await call.operation()
        except Exception as exc:
            self._failed += 1
            self.logger.warning("Governed call failed", operation=call.name, error=str(exc))
            self._record(call.name, "error", started)
            if not call.future.done():
                call.future.set_exception(exc)
            return

        self._record(call.name, "ok", started)
        if not call.future.done():
            call.future.set_result(result)

    def _cancel_pending(self, current: QueuedCall) -> None:
        for call in [current, *self._queue]:
            if not call.future.done():
                call.future.cancel()
        self._queue.clear()
        self._update_depth()

    def _update_depth(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("governor_queue_depth", len(self._queue))

    def _record(self, operation: str, outcome: str, started: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter("datasheet_calls_total", operation=operation, outcome=outcome)
        self.metrics.observe_histogram(
            "datasheet_call_duration_seconds",
            time.monotonic() - started,
            operation=operation,
        )
