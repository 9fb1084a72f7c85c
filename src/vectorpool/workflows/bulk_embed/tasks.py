"""
Task queues.

Every unit of orchestration work is a named task that takes a JSON-able
payload, does bounded work, and may enqueue follow-up tasks. Delivery is
at-least-once, so handlers must tolerate duplicate and concurrent runs.

    queue = InlineTaskQueue()
    queue.register(PREPARE_TASK, orchestrator.prepare, queue_name="bulk-prepare")
    queue.enqueue(PREPARE_TASK, {"run_id": 1})
    queue.run_until_idle()
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

PREPARE_TASK = "vectorpool:prepare-bulk-embedding"
POLL_TASK = "vectorpool:poll-or-complete-bulk-embedding"
VECTORIZE_TASK = "vectorpool:vectorize"

TaskHandler = Callable[..., Any]


class UnknownTaskError(KeyError):
    def __init__(self, task_name: str):
        super().__init__(f"No handler registered for task '{task_name}'")
        self.task_name = task_name


class TaskQueue(ABC):
    """Message-passing task dispatcher."""

    @abstractmethod
    def register(self, task_name: str, handler: TaskHandler, *, queue_name: str) -> None:
        """Bind `handler(**payload)` to `task_name` on queue `queue_name`."""

    @abstractmethod
    def enqueue(self, task_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> None:
        """Schedule one run of `task_name`."""

    def start(self, client: Any) -> None:
        """Called once after all tasks are registered."""
        return None


@dataclass
class TaskRecord:
    task_name: str
    payload: dict[str, Any]
    status: str = "pending"
    result: Any = None
    error: Optional[str] = None
    not_before: float = 0.0
    exception: Optional[BaseException] = field(default=None, repr=False)


class InlineTaskQueue(TaskQueue):
    """
    In-process FIFO queue drained explicitly with run_until_idle().

    Handler exceptions are recorded on the task (status "failed") and logged,
    the way a host job table keeps failed jobs visible.

    Args:
        respect_delays: Sleep until a delayed task is due (off by default so
            polling loops drain immediately)
    """

    def __init__(self, *, respect_delays: bool = False):
        self.respect_delays = respect_delays
        self._handlers: dict[str, tuple[TaskHandler, str]] = {}
        self._pending: deque[TaskRecord] = deque()
        self.history: list[TaskRecord] = []

    def register(self, task_name: str, handler: TaskHandler, *, queue_name: str) -> None:
        self._handlers[task_name] = (handler, queue_name)

    def enqueue(self, task_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> None:
        if task_name not in self._handlers:
            raise UnknownTaskError(task_name)
        record = TaskRecord(
            task_name=task_name,
            payload=dict(payload),
            not_before=time.monotonic() + max(delay_seconds, 0),
        )
        self._pending.append(record)
        logger.debug(f"Enqueued {task_name} {payload} (delay={delay_seconds}s)")

    @property
    def pending(self) -> list[TaskRecord]:
        return list(self._pending)

    @property
    def failed(self) -> list[TaskRecord]:
        return [r for r in self.history if r.status == "failed"]

    def pending_count(self, task_name: Optional[str] = None) -> int:
        return sum(1 for r in self._pending if task_name is None or r.task_name == task_name)

    def run_next(self) -> Optional[TaskRecord]:
        """Run the oldest pending task. Returns None when the queue is empty."""
        if not self._pending:
            return None
        record = self._pending.popleft()
        if self.respect_delays:
            wait = record.not_before - time.monotonic()
            if wait > 0:
                time.sleep(wait)

        handler, _ = self._handlers[record.task_name]
        try:
            record.result = handler(**record.payload)
            record.status = "completed"
        except Exception as e:
            record.status = "failed"
            record.error = str(e)
            record.exception = e
            logger.error(f"Task {record.task_name} {record.payload} failed: {e}")
        self.history.append(record)
        return record

    def run_until_idle(self, max_tasks: int = 1000) -> int:
        """Drain the queue, including tasks enqueued along the way.

        Stops after `max_tasks` runs so a provider that never finishes cannot
        spin forever. Returns the number of tasks run.
        """
        ran = 0
        while self._pending and ran < max_tasks:
            self.run_next()
            ran += 1
        if self._pending:
            logger.warning(f"Stopped after {ran} tasks with {len(self._pending)} still pending")
        return ran
