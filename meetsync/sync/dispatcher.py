"""
Background Dispatcher

Fire-and-forget handoff for work that must not block an acknowledgement
(pipeline runs, record writes, card updates). Tasks are tracked so they are
not garbage-collected mid-flight, concurrency is bounded by a semaphore, and
failures are logged with their trace id and kept for inspection.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Deque, List, Optional, Set

from ..common.tracing import trace_logger

logger = logging.getLogger("meetsync.sync.dispatcher")


@dataclass
class DispatchFailure:
    """A background task that raised"""
    session_id: Optional[str]
    label: str
    error: BaseException
    failed_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "label": self.label,
            "error": f"{type(self.error).__name__}: {self.error}",
            "failed_at": self.failed_at,
        }


class BackgroundDispatcher:
    """Bounded, tracked background task runner."""

    def __init__(self, max_concurrency: int = 8, max_failures: int = 100):
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._tasks: Set[asyncio.Task] = set()
        self.failures: Deque[DispatchFailure] = deque(maxlen=max_failures)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, work: Awaitable, *, session_id: Optional[str] = None, label: str = "task") -> asyncio.Task:
        """Schedule a coroutine; must be called from the running event loop."""
        task = asyncio.ensure_future(self._run(work, session_id, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, work: Awaitable, session_id: Optional[str], label: str) -> None:
        log = trace_logger(logger, session_id)
        async with self._semaphore:
            try:
                await work
            except asyncio.CancelledError:
                log.warning("Background %s cancelled", label)
                raise
            except Exception as e:
                log.exception("Background %s failed: %s", label, e)
                self.failures.append(DispatchFailure(session_id=session_id, label=label, error=e))

    async def drain(self) -> None:
        """Wait until every submitted task (including ones they submit) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding work (server shutdown)."""
        tasks: List[asyncio.Task] = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
