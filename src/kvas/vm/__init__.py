"""VM leases, providers and remote execution."""

from kvas.vm.base import ExecResult, RemoteShell, VirtualMachineProvider, VmLease
from kvas.vm.executor import RemoteExecutor, capture_filenames

__all__ = [
    "ExecResult",
    "RemoteExecutor",
    "RemoteShell",
    "VirtualMachineProvider",
    "VmLease",
    "capture_filenames",
]
