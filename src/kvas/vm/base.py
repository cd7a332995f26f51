"""Abstract base classes for VM leases, providers and remote shells."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from kvas.observability.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ExecResult:
    """Outcome of a single remote command."""

    exit_code: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class RemoteShell(ABC):
    """Authenticated remote-shell channel to one VM."""

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the channel is currently usable."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open and authenticate the channel. Raises on failure."""
        ...

    @abstractmethod
    async def exec(self, command: str) -> ExecResult:
        """Run a command and wait for it to exit."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the channel. Safe to call on a closed channel."""
        ...


class VmLease:
    """One provisioned VM, owned by the task that acquired it until released."""

    def __init__(
        self,
        instance: str,
        address: str,
        external_address: str,
        task_id: UUID,
        role: str,
        provider: "VirtualMachineProvider",
    ):
        self.instance = instance
        self.address = address
        self.external_address = external_address
        self.task_id = task_id
        self.role = role
        self.released = False
        self.shell: Optional[RemoteShell] = None
        # Serialises commands issued to this VM
        self.lock = asyncio.Lock()
        self._provider = provider

    @property
    def provider(self) -> "VirtualMachineProvider":
        return self._provider

    def close_shell(self) -> None:
        """Close the live remote shell, if any."""
        shell, self.shell = self.shell, None
        if shell is not None:
            shell.close()

    def release(self) -> None:
        """Give the VM back to the provider (non-blocking, idempotent)."""
        self._provider.release(self)

    def summary(self) -> dict[str, str]:
        return {
            "instance": self.instance,
            "address": self.address,
            "external_address": self.external_address,
        }

    def __repr__(self) -> str:
        return f"VmLease(instance={self.instance!r}, address={self.address!r})"


class VirtualMachineProvider(ABC):
    """
    Acquires and releases VM leases against a cloud backend.

    Subclasses implement `_create`, `_delete` and `new_shell`. Releasing is
    handled here: it never blocks the caller, runs at most once per lease, and
    only logs failures.
    """

    def __init__(self) -> None:
        self._pending_creations: set[asyncio.Task] = set()
        self._pending_releases: set[asyncio.Task] = set()

    async def acquire(self, role: str, task_id: UUID) -> VmLease:
        """
        Provision a VM for a task.

        Creation is shielded from cancellation: the cloud call cannot be
        recalled once issued, so a VM whose caller was cancelled is released
        as soon as it exists.

        Raises:
            ProvisionError: The cloud call failed or timed out after retries.
        """
        creation = asyncio.get_running_loop().create_task(
            self._create(role, task_id), name=f"create-{role}-{task_id}"
        )
        self._pending_creations.add(creation)
        creation.add_done_callback(self._pending_creations.discard)
        try:
            lease = await asyncio.shield(creation)
        except asyncio.CancelledError:
            creation.add_done_callback(self._release_orphan)
            raise
        metrics.inc_counter("vm.acquired")
        logger.info(
            f"instance `{lease.instance}` ({lease.address}) successfully created "
            f"for task {task_id}"
        )
        return lease

    def _release_orphan(self, creation: asyncio.Task) -> None:
        if creation.cancelled() or creation.exception() is not None:
            return
        lease = creation.result()
        metrics.inc_counter("vm.orphaned")
        logger.warning(
            f"instance `{lease.instance}` created after task {lease.task_id} gave up, releasing"
        )
        self.release(lease)

    def release(self, lease: VmLease) -> None:
        """Schedule deletion of the VM behind a lease."""
        if lease.released:
            logger.debug(f"instance `{lease.instance}` already released")
            return
        lease.released = True

        try:
            lease.close_shell()
        except Exception as e:
            logger.warning(f"error while closing shell of `{lease.instance}`: {e}")

        release_task = asyncio.get_running_loop().create_task(
            self._delete_logged(lease),
            name=f"release-{lease.instance}",
        )
        self._pending_releases.add(release_task)
        release_task.add_done_callback(self._pending_releases.discard)

    async def _delete_logged(self, lease: VmLease) -> None:
        try:
            await self._delete(lease)
        except Exception as e:
            metrics.inc_counter("vm.release_failed")
            logger.error(f"error while shutting down `{lease.instance}`: {e}", exc_info=True)
            return
        metrics.inc_counter("vm.released")
        logger.info(f"instance `{lease.instance}` successfully shut down")

    async def aclose(self) -> None:
        """Wait for in-flight creations and outstanding releases to settle."""
        # Orphaned creations schedule their release when they finish
        while self._pending_creations or self._pending_releases:
            await asyncio.gather(
                *self._pending_creations, *self._pending_releases, return_exceptions=True
            )

    @abstractmethod
    async def _create(self, role: str, task_id: UUID) -> VmLease:
        """Create a VM and return its lease."""
        ...

    @abstractmethod
    async def _delete(self, lease: VmLease) -> None:
        """Delete the VM behind a lease."""
        ...

    @abstractmethod
    def new_shell(self, lease: VmLease) -> RemoteShell:
        """Return an unconnected remote shell for a lease."""
        ...
