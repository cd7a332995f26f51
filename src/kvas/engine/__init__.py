"""KVAS engine - task orchestration and state machine."""

from kvas.engine.core import LoadTestEngine
from kvas.engine.registry import TaskRegistry
from kvas.engine.topology import ClusterTopology, get_topology, parse_topology
from kvas.errors import (
    CommandError,
    InvalidStateTransition,
    KvasError,
    ProvisionError,
    RemoteConnectionError,
    TaskNotFound,
    UnknownTopology,
)

__all__ = [
    "ClusterTopology",
    "CommandError",
    "InvalidStateTransition",
    "KvasError",
    "LoadTestEngine",
    "ProvisionError",
    "RemoteConnectionError",
    "TaskNotFound",
    "TaskRegistry",
    "UnknownTopology",
    "get_topology",
    "parse_topology",
]
