"""KVAS core engine - task orchestration state machine."""

import asyncio
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Awaitable, Sequence, Union
from uuid import UUID, uuid4

from kvas.engine.commands import WorkloadCommands
from kvas.engine.registry import TaskRegistry
from kvas.engine.topology import ClusterTopology, get_topology
from kvas.errors import InvalidStateTransition, TaskNotFound
from kvas.models import Task, TaskState, Topology, VmRole
from kvas.observability.metrics import metrics
from kvas.storage.base import BlobStore
from kvas.tasks.runner import TaskRunner
from kvas.vm.base import VirtualMachineProvider, VmLease
from kvas.vm.executor import RemoteExecutor

logger = logging.getLogger(__name__)


async def join_all(*aws: Awaitable[Any]) -> list[Any]:
    """
    Wait for every awaitable, then re-raise the first failure.

    Siblings of a failed member are not cancelled; they run to completion so
    whatever they acquired is known to the caller's cleanup.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


class LoadTestEngine:
    """
    Drives a load-test task from provisioning to teardown.

    Lifecycle: setup -> running -> finished, with failure reachable from any
    non-terminal state. The orchestration of each task runs in the background
    on the TaskRunner; callers observe progress through the registry.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        provider: VirtualMachineProvider,
        executor: RemoteExecutor,
        blob_store: BlobStore,
        runner: TaskRunner,
        workload: WorkloadCommands,
        task_timeout_seconds: float = 3600,
    ):
        self.registry = registry
        self.provider = provider
        self.executor = executor
        self.blob_store = blob_store
        self.runner = runner
        self.workload = workload
        self.task_timeout_seconds = task_timeout_seconds
        self._handles: dict[UUID, asyncio.Task] = {}

    # =========================================================================
    # Public operations
    # =========================================================================

    def launch_task(self, image: str, node_count: int, topology: Union[str, Topology]) -> Task:
        """
        Register a task in SETUP and start its orchestration in the background.

        Returns immediately, before any VM is provisioned.
        """
        if not image or not image.strip():
            raise ValueError("image is required")
        if node_count < 1:
            raise ValueError(f"node_count must be at least 1, got {node_count}")
        strategy = get_topology(
            topology,
            port=self.workload.node_port,
            container=self.workload.node_container,
        )

        now = datetime.now(timezone.utc)
        task = self.registry.create(
            Task(
                task_id=uuid4(),
                image=image.strip(),
                node_count=node_count,
                topology=strategy.topology,
                created_at=now,
                updated_at=now,
            )
        )
        metrics.inc_counter("tasks.launched")
        logger.info(
            f"launching task {task.task_id}: image={task.image} nodes={node_count} "
            f"topology={strategy.topology.value}"
        )

        handle = self.runner.spawn(
            self._execute(task.task_id, strategy), name=f"task-{task.task_id}"
        )
        self._handles[task.task_id] = handle
        handle.add_done_callback(lambda _: self._settled(task.task_id))
        return task

    def get_task(self, task_id: UUID) -> Task:
        task = self.registry.get(task_id)
        if task is None:
            raise TaskNotFound(str(task_id))
        return task

    def list_tasks(self) -> list[Task]:
        return self.registry.list()

    def cancel_task(self, task_id: UUID) -> bool:
        """
        Request cancellation of a running task.

        The orchestration stops issuing commands and goes straight to cleanup.
        Returns False when the task has already settled.
        """
        task = self.get_task(task_id)
        handle = self._handles.get(task_id)
        if task.is_terminal() or handle is None or handle.done():
            return False
        logger.info(f"cancelling task {task_id}")
        return handle.cancel()

    async def wait_for_task(self, task_id: UUID) -> Task:
        """Wait until a task settles, without raising its failure."""
        handle = self._handles.get(task_id)
        if handle is not None:
            await asyncio.gather(handle, return_exceptions=True)
        return self.get_task(task_id)

    async def get_log_urls(self, task_id: UUID) -> list[str]:
        """Download URLs for every log archived by a task."""
        self.get_task(task_id)
        return await self.blob_store.signed_urls(f"{task_id}/")

    # =========================================================================
    # Orchestration
    # =========================================================================

    async def _execute(self, task_id: UUID, strategy: ClusterTopology) -> None:
        leases: list[VmLease] = []
        started = perf_counter()
        metrics.add_gauge("tasks.active", 1)
        try:
            await asyncio.wait_for(
                self._orchestrate(task_id, strategy, leases),
                timeout=self.task_timeout_seconds,
            )
            self.registry.transition(task_id, TaskState.FINISHED)
            metrics.inc_counter("tasks.finished")
        except asyncio.CancelledError:
            logger.warning(f"task {task_id} cancelled")
            self._fail(task_id)
            raise
        except asyncio.TimeoutError:
            logger.error(f"task {task_id} exceeded its {self.task_timeout_seconds}s deadline")
            self._fail(task_id)
            raise
        except Exception as e:
            logger.error(f"task {task_id} failed: {e}")
            self._fail(task_id)
            raise
        finally:
            for lease in leases:
                self.provider.release(lease)
            metrics.add_gauge("tasks.active", -1)
            metrics.observe("task.duration_seconds", perf_counter() - started)

    def _settled(self, task_id: UUID) -> None:
        self._handles.pop(task_id, None)
        task = self.registry.get(task_id)
        # Cancelled before the orchestration got to run
        if task is not None and not task.is_terminal():
            self._fail(task_id)

    def _fail(self, task_id: UUID) -> None:
        metrics.inc_counter("tasks.failed")
        try:
            self.registry.transition(task_id, TaskState.FAILURE)
        except InvalidStateTransition as e:
            logger.warning(f"task {task_id} not marked failed: {e}")

    async def _orchestrate(
        self, task_id: UUID, strategy: ClusterTopology, leases: list[VmLease]
    ) -> None:
        task = self.get_task(task_id)

        client, nodes = await join_all(
            self._acquire_client(task_id, leases),
            self._acquire_nodes(task_id, task.node_count, leases),
        )

        # Nodes are visible before the task reports RUNNING
        self.registry.record_nodes(task_id, nodes)
        leader, followers = nodes[0], nodes[1:]

        await join_all(
            *(self._run_sequence(node, self.workload.node_setup(task.image)) for node in nodes),
            self._run_sequence(client, self.workload.client_setup()),
        )

        self.registry.transition(task_id, TaskState.RUNNING)
        self.registry.record_leader(task_id, leader.address)
        await join_all(
            self._run_sequence(
                leader, [strategy.leader_command(leader.address)], capture_logs=True
            ),
            *(
                self._run_sequence(
                    follower,
                    [strategy.follower_command(leader.address, follower.address)],
                    capture_logs=True,
                )
                for follower in followers
            ),
        )

        await self._run_sequence(
            client, [self.workload.load_test(leader.address)], capture_logs=True
        )

        await join_all(
            *(
                self._run_sequence(node, [self.workload.node_logs()], capture_logs=True)
                for node in nodes
            )
        )

    async def _acquire_client(self, task_id: UUID, leases: list[VmLease]) -> VmLease:
        lease = await self.provider.acquire(VmRole.CLIENT.value, task_id)
        leases.append(lease)
        self.registry.record_client(task_id, lease)
        return lease

    async def _acquire_nodes(
        self, task_id: UUID, node_count: int, leases: list[VmLease]
    ) -> list[VmLease]:
        return await join_all(
            *(self._acquire_node(task_id, leases) for _ in range(node_count))
        )

    async def _acquire_node(self, task_id: UUID, leases: list[VmLease]) -> VmLease:
        lease = await self.provider.acquire(VmRole.NODE.value, task_id)
        leases.append(lease)
        return lease

    async def _run_sequence(
        self, lease: VmLease, commands: Sequence[str], capture_logs: bool = False
    ) -> None:
        async with self.executor.channel(lease):
            for command in commands:
                await self.executor.run(lease, command, capture_logs=capture_logs)
