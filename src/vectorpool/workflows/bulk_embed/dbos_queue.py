"""
DBOS-backed task queue (install with the `dbos` extra).

Each task becomes a named DBOS workflow bound to this instance, so two
plugin instances never share handlers. Delayed requeues sleep durably inside
the workflow instead of holding a worker thread.
"""

from __future__ import annotations

import logging
from typing import Any

from dbos import DBOS, Queue

from vectorpool.core.dbos import init_dbos
from vectorpool.db import DatabaseClient
from vectorpool.workflows.bulk_embed.tasks import TaskHandler, TaskQueue, UnknownTaskError

logger = logging.getLogger(__name__)


class DBOSTaskQueue(TaskQueue):
    """
    Args:
        concurrency: Max concurrent workflows per queue
        name_prefix: Prefix for workflow names (distinguishes plugin instances)
    """

    def __init__(self, *, concurrency: int = 4, name_prefix: str = ""):
        self.concurrency = concurrency
        self.name_prefix = name_prefix
        self._queues: dict[str, Queue] = {}
        self._workflows: dict[str, tuple[Any, str]] = {}

    def _get_queue(self, queue_name: str) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(queue_name, concurrency=self.concurrency)
        return self._queues[queue_name]

    def register(self, task_name: str, handler: TaskHandler, *, queue_name: str) -> None:
        workflow_name = f"{self.name_prefix}{task_name}"

        @DBOS.workflow(name=workflow_name)
        def task_workflow(payload: dict[str, Any], delay_seconds: float = 0) -> Any:
            if delay_seconds > 0:
                DBOS.sleep(delay_seconds)
            return handler(**payload)

        self._get_queue(queue_name)
        self._workflows[task_name] = (task_workflow, queue_name)

    def start(self, client: DatabaseClient) -> None:
        """Launch DBOS once every workflow and queue has been declared."""
        init_dbos(client)

    def enqueue(self, task_name: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> Any:
        if task_name not in self._workflows:
            raise UnknownTaskError(task_name)
        workflow, queue_name = self._workflows[task_name]
        logger.debug(f"Enqueuing {task_name} on {queue_name} (delay={delay_seconds}s)")
        return self._get_queue(queue_name).enqueue(workflow, dict(payload), delay_seconds)
