"""
Pytest fixtures for KVAS tests.

Cloud, remote shell and blob storage are replaced by in-memory fakes that
record what the engine asked of them.
"""

import asyncio
import os
import re
import time
from collections import defaultdict
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test config is set before importing kvas modules.
os.environ.setdefault("KVAS_ALLOW_INSECURE_DEV", "true")
os.environ.setdefault("KVAS_ENV", "development")

from kvas.engine import LoadTestEngine, TaskRegistry
from kvas.engine.commands import WorkloadCommands
from kvas.errors import ProvisionError
from kvas.observability.metrics import metrics
from kvas.storage.base import BlobStore
from kvas.tasks import TaskRunner
from kvas.vm.base import ExecResult, RemoteShell, VirtualMachineProvider, VmLease
from kvas.vm.executor import RemoteExecutor

_CAPTURED = re.compile(r"^(?P<command>.*) > '(?P<out>[^']*)' 2> '(?P<err>[^']*)'$", re.S)


class FakeShell(RemoteShell):
    """Remote shell backed by a FakeProvider's scripted VM behaviour."""

    def __init__(self, provider: "FakeProvider", instance: str):
        self.provider = provider
        self.instance = instance
        self._connected = False
        self.closed = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        await asyncio.sleep(0)
        self.provider.connect_attempts[self.instance] += 1
        remaining = self.provider.connect_failures.get(self.instance, 0)
        if remaining:
            self.provider.connect_failures[self.instance] = remaining - 1
            raise OSError(f"connection to {self.instance} refused")
        self._connected = True

    async def exec(self, command: str) -> ExecResult:
        assert self._connected, "exec on a closed shell"
        in_flight = self.provider.in_flight
        in_flight[self.instance] += 1
        self.provider.max_in_flight[self.instance] = max(
            self.provider.max_in_flight[self.instance], in_flight[self.instance]
        )
        try:
            await asyncio.sleep(self.provider.command_delay)
            return self.provider.respond(self.instance, command)
        finally:
            in_flight[self.instance] -= 1

    def close(self) -> None:
        if self._connected:
            self.provider.closed_shells.append(self.instance)
        self._connected = False
        self.closed = True


class FakeProvider(VirtualMachineProvider):
    """
    Provider whose VMs live in memory.

    Acquisition calls are numbered from 0 in call order and the instance is
    named `<role>-<call index>`. Commands containing a key of `fail_commands`
    exit with the mapped status.
    """

    def __init__(self) -> None:
        super().__init__()
        self.acquire_calls = 0
        self.fail_acquire_at: set[int] = set()
        self.acquire_delay = 0.0
        self.insert_seconds = 0.0
        self.created: list[str] = []
        self.command_delay = 0.0
        self.acquired: list[VmLease] = []
        self.deleted: list[str] = []
        self.fail_delete: set[str] = set()
        self.fail_commands: dict[str, int] = {}
        self.connect_failures: dict[str, int] = {}
        self.connect_attempts: dict[str, int] = defaultdict(int)
        self.history: dict[str, list[str]] = defaultdict(list)
        self.files: dict[tuple[str, str], bytes] = {}
        self.fail_reads: set[str] = set()
        self.closed_shells: list[str] = []
        self.in_flight: dict[str, int] = defaultdict(int)
        self.max_in_flight: dict[str, int] = defaultdict(int)

    async def _create(self, role: str, task_id: UUID) -> VmLease:
        index = self.acquire_calls
        self.acquire_calls += 1
        await asyncio.sleep(self.acquire_delay)
        if index in self.fail_acquire_at:
            raise ProvisionError(role, str(task_id), "quota exceeded")
        name = f"{role}-{index}"
        await asyncio.to_thread(self._insert, name)
        lease = VmLease(
            instance=name,
            address=f"10.0.0.{index + 1}",
            external_address=f"34.0.0.{index + 1}",
            task_id=task_id,
            role=role,
            provider=self,
        )
        self.acquired.append(lease)
        return lease

    def _insert(self, name: str) -> None:
        # Runs in a worker thread like a blocking cloud client call
        time.sleep(self.insert_seconds)
        self.created.append(name)

    async def _delete(self, lease: VmLease) -> None:
        await asyncio.sleep(0)
        if lease.instance in self.fail_delete:
            raise RuntimeError(f"delete of {lease.instance} failed")
        self.deleted.append(lease.instance)

    def new_shell(self, lease: VmLease) -> RemoteShell:
        return FakeShell(self, lease.instance)

    def _exit_code(self, command: str) -> int:
        for fragment, code in self.fail_commands.items():
            if fragment in command:
                return code
        return 0

    def respond(self, instance: str, command: str) -> ExecResult:
        self.history[instance].append(command)

        captured = _CAPTURED.match(command)
        if captured:
            inner = captured.group("command")
            code = self._exit_code(inner)
            self.files[(instance, captured.group("out"))] = f"out: {inner}".encode()
            self.files[(instance, captured.group("err"))] = (
                f"err: {inner} failed" if code else ""
            ).encode()
            return ExecResult(exit_code=code)

        if command.startswith("cat '"):
            if instance in self.fail_reads:
                raise EOFError(f"channel to {instance} dropped")
            data = self.files.get((instance, command[len("cat '"):-1]))
            if data is None:
                return ExecResult(exit_code=1, stderr=b"No such file or directory")
            return ExecResult(exit_code=0, stdout=data)

        code = self._exit_code(command)
        return ExecResult(exit_code=code, stdout=b"ok", stderr=b"boom" if code else b"")

    def commands_for(self, instance: str) -> list[str]:
        return [c for c in self.history[instance] if not c.startswith("cat '")]


class MemoryBlobStore(BlobStore):
    """Blob store keeping objects in a dict."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_puts = False

    async def put(self, key: str, data: bytes) -> None:
        await asyncio.sleep(0)
        if self.fail_puts:
            raise OSError("bucket unavailable")
        self.objects[key] = data

    async def signed_urls(self, prefix: str) -> list[str]:
        return [f"https://storage.test/{key}" for key in sorted(self.objects) if key.startswith(prefix)]

    def keys_under(self, prefix: str) -> list[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def executor(blob_store) -> RemoteExecutor:
    return RemoteExecutor(blob_store=blob_store, connect_attempts=3, retry_wait_seconds=0)


@pytest.fixture
def workload() -> WorkloadCommands:
    return WorkloadCommands(
        node_container="kvnode",
        node_port=8080,
        loadtest_image="loadtester:test",
        loadtest_args="--duration 1s",
    )


@pytest.fixture
async def engine(provider, executor, blob_store, workload):
    """Engine wired to the fakes; outstanding work is drained on teardown."""
    runner = TaskRunner()
    engine = LoadTestEngine(
        registry=TaskRegistry(),
        provider=provider,
        executor=executor,
        blob_store=blob_store,
        runner=runner,
        workload=workload,
        task_timeout_seconds=5,
    )
    yield engine
    await runner.shutdown(timeout=1)
    await provider.aclose()


@pytest.fixture
async def client(engine):
    """Async test client with the engine attached to the app."""
    from kvas.main import app

    app.state.engine = engine
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.state.engine = None
