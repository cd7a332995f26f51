"""Task model - one end-to-end load-test run."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from kvas.models.enums import TaskState, Topology
from kvas.vm.base import VmLease


class Task(BaseModel):
    """Load-test task tracked by id and lifecycle state."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Identity
    task_id: UUID

    # Request
    image: str
    node_count: int = Field(ge=1)
    topology: Topology

    # Status
    state: TaskState = TaskState.SETUP

    # Resources (nodes are recorded once, as a whole, leader first)
    client: Optional[VmLease] = None
    nodes: tuple[VmLease, ...] = ()
    leader_address: Optional[str] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime

    @property
    def leader(self) -> Optional[VmLease]:
        return self.nodes[0] if self.nodes else None

    def is_terminal(self) -> bool:
        """Check if task is in a terminal state."""
        return self.state.is_terminal()

    def can_transition_to(self, new_state: TaskState) -> bool:
        """Check if transition to new state is valid per state machine."""
        valid_transitions: dict[TaskState, set[TaskState]] = {
            TaskState.SETUP: {TaskState.RUNNING, TaskState.FAILURE},
            TaskState.RUNNING: {TaskState.FINISHED, TaskState.FAILURE},
            TaskState.FINISHED: set(),
            TaskState.FAILURE: set(),
        }
        return new_state in valid_transitions.get(self.state, set())

    def to_view(self) -> dict[str, Any]:
        """Outward representation of the task."""
        leader = self.leader
        return {
            "task_id": self.task_id,
            "image": self.image,
            "node_count": self.node_count,
            "topology": self.topology.value,
            "state": self.state.value,
            "client": self.client.summary() if self.client else None,
            "nodes": [node.summary() for node in self.nodes],
            "leader": leader.instance if leader and self.leader_address else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
