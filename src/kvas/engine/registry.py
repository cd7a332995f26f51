"""Process-wide task registry."""

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Optional, Sequence
from uuid import UUID

from kvas.errors import InvalidStateTransition, TaskNotFound
from kvas.models import Task, TaskState
from kvas.vm.base import VmLease

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskRegistry:
    """
    Concurrent map from task id to task.

    Read by the API layer, written only by the engine. Each write holds the
    lock just long enough to update one task, so unrelated tasks never wait on
    each other for more than a dictionary operation.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._tasks: dict[UUID, Task] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def create(self, task: Task) -> Task:
        with self._lock:
            if task.task_id in self._tasks:
                raise ValueError(f"Task {task.task_id} already registered")
            self._tasks[task.task_id] = task
        return task

    def get(self, task_id: UUID) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def list(self) -> list[Task]:
        with self._lock:
            return sorted(self._tasks.values(), key=lambda t: t.created_at)

    def _require(self, task_id: UUID) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(str(task_id))
        return task

    def transition(self, task_id: UUID, state: TaskState) -> Task:
        """Move a task forward in its lifecycle."""
        with self._lock:
            task = self._require(task_id)
            if not task.can_transition_to(state):
                raise InvalidStateTransition(task.state.value, state.value)
            previous = task.state
            task.state = state
            task.updated_at = _now()
        logger.info(f"task {task_id} {previous.value} -> {state.value}")
        return task

    def record_client(self, task_id: UUID, lease: VmLease) -> Task:
        with self._lock:
            task = self._require(task_id)
            if task.client is not None:
                raise ValueError(f"Task {task_id} already has a client VM")
            task.client = lease
            task.updated_at = _now()
        return task

    def record_nodes(self, task_id: UUID, leases: Sequence[VmLease]) -> Task:
        """Record the full node set at once; the first lease is the leader."""
        if not leases:
            raise ValueError("At least one node lease is required")
        with self._lock:
            task = self._require(task_id)
            if task.nodes:
                raise ValueError(f"Task {task_id} nodes already recorded")
            task.nodes = tuple(leases)
            task.updated_at = _now()
        return task

    def record_leader(self, task_id: UUID, address: str) -> Task:
        with self._lock:
            task = self._require(task_id)
            task.leader_address = address
            task.updated_at = _now()
        return task
