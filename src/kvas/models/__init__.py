"""KVAS data models."""

from kvas.models.enums import TaskState, Topology, VmRole
from kvas.models.task import Task

__all__ = [
    "Task",
    "TaskState",
    "Topology",
    "VmRole",
]
