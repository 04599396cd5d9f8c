"""
Request lifecycle management for concurrent store queries.

The views issue queries of several kinds (documents, metric aggregation,
operation names, ...) from one event loop. Each kind admits at most one
current request: starting a new one cancels the previous one, and the
sequence number stored with each record keeps a superseded request from
clearing the record of the request that replaced it.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from common.pylogger import get_python_logger

logger = get_python_logger(__name__)


class RequestKind(Enum):
    """Logical categories of fetch operations."""
    LOGS = "logs"
    METRICS_AGG = "metrics_agg"
    METRIC_DETAIL_DOCS = "metric_detail_docs"
    TRANSACTION_NAMES = "transaction_names"
    SPANS = "spans"
    PERSPECTIVE = "perspective"
    FIELD_CAPS = "field_caps"
    AUTO_DETECT = "auto_detect"


class RequestContext:
    """
    Cancellation and deadline scope for one request.

    ``run`` executes a coroutine as a task bounded by the remaining time;
    ``cancel`` marks the context cancelled and cancels any task it is running.
    Cancellation is best-effort: the task is signalled, not awaited.
    """

    def __init__(self, kind: RequestKind, seq: int, timeout: Optional[float] = None):
        self.kind = kind
        self.seq = seq
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout if timeout else None
        self._cancelled = threading.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._tasks_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a timeout."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def cancel(self) -> None:
        self._cancelled.set()
        with self._tasks_lock:
            tasks = list(self._tasks)
        for task in tasks:
            _cancel_task(task)

    async def run(self, coro: Awaitable[Any]) -> Any:
        """
        Await ``coro`` within this context.

        Raises:
            asyncio.CancelledError: the context was cancelled (superseded)
            asyncio.TimeoutError: the deadline passed first
        """
        if self.cancelled:
            if asyncio.iscoroutine(coro):
                coro.close()
            raise asyncio.CancelledError()

        task = asyncio.ensure_future(coro)
        with self._tasks_lock:
            self._tasks.add(task)
        try:
            return await asyncio.wait_for(task, timeout=self.remaining())
        finally:
            with self._tasks_lock:
                self._tasks.discard(task)


def _cancel_task(task: asyncio.Task) -> None:
    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None

    loop = task.get_loop()
    if running is loop:
        task.cancel()
    elif not loop.is_closed():
        loop.call_soon_threadsafe(task.cancel)


@dataclass
class RequestRecord:
    """The current request of one kind."""
    kind: RequestKind
    seq: int
    cancel: Callable[[], None]


class RequestManager:
    """Tracks at most one in-flight request per kind."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[RequestKind, RequestRecord] = {}
        self._seq = 0

    def start_request(self, kind: RequestKind,
                      timeout: Optional[float] = None) -> Tuple[RequestContext, Callable[[], None]]:
        """
        Start a request of ``kind``, superseding any current one.

        Args:
            kind: Request category
            timeout: Deadline in seconds for the new request

        Returns:
            Tuple of (context, done). ``done`` must be called when the request
            finishes; it clears the record only while it is still current.
        """
        with self._lock:
            existing = self._records.get(kind)
            if existing is not None:
                existing.cancel()
                logger.debug(f"Superseding {kind.value} request #{existing.seq}")

            self._seq += 1
            seq = self._seq
            context = RequestContext(kind, seq, timeout)
            self._records[kind] = RequestRecord(kind=kind, seq=seq, cancel=context.cancel)

        def done() -> None:
            with self._lock:
                record = self._records.get(kind)
                if record is not None and record.seq == seq:
                    del self._records[kind]
            context.cancel()

        return context, done

    def is_current(self, kind: RequestKind, seq: int) -> bool:
        with self._lock:
            record = self._records.get(kind)
            return record is not None and record.seq == seq

    def current_seq(self, kind: RequestKind) -> Optional[int]:
        with self._lock:
            record = self._records.get(kind)
            return record.seq if record else None

    def active_kinds(self) -> List[RequestKind]:
        with self._lock:
            return list(self._records)

    def cancel(self, kind: RequestKind) -> None:
        """Cancel and forget the current request of ``kind``, if any."""
        with self._lock:
            record = self._records.pop(kind, None)
            if record is not None:
                record.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            records = list(self._records.values())
            self._records.clear()
            for record in records:
                record.cancel()
