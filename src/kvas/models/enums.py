"""KVAS enumerations."""

from enum import Enum


class TaskState(str, Enum):
    """Task lifecycle state."""

    SETUP = "setup"
    RUNNING = "running"
    FINISHED = "finished"
    FAILURE = "failure"

    @classmethod
    def terminal_states(cls) -> set["TaskState"]:
        """Return terminal states."""
        return {cls.FINISHED, cls.FAILURE}

    def is_terminal(self) -> bool:
        """Check if state is terminal."""
        return self in self.terminal_states()


class Topology(str, Enum):
    """Cluster topology of the key-value store under test."""

    REPLICATION = "replication"
    NAIVE_SHARDING = "naive-sharding"


class VmRole(str, Enum):
    """Role of a provisioned VM within a task."""

    # Runs the load generator
    CLIENT = "client"
    # Runs one key-value store replica or shard
    NODE = "node"
