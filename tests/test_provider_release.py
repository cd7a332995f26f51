"""
VM provider acquisition and best-effort release.
"""

import asyncio
import logging
from uuid import uuid4

import pytest

from kvas.engine import ProvisionError
from kvas.observability.metrics import metrics


@pytest.mark.asyncio
async def test_acquire_returns_addressable_lease(provider):
    task_id = uuid4()

    lease = await provider.acquire("node", task_id)

    assert lease.instance == "node-0"
    assert lease.address == "10.0.0.1"
    assert lease.external_address == "34.0.0.1"
    assert lease.task_id == task_id
    assert not lease.released
    assert metrics.snapshot()["counters"]["vm.acquired"] == 1


@pytest.mark.asyncio
async def test_acquire_failure_raises_provision_error(provider):
    provider.fail_acquire_at = {0}

    with pytest.raises(ProvisionError) as exc_info:
        await provider.acquire("client", uuid4())

    assert exc_info.value.role == "client"
    assert provider.acquired == []


@pytest.mark.asyncio
async def test_cancelled_acquire_releases_vm_once_created(provider):
    provider.insert_seconds = 0.1
    acquiring = asyncio.create_task(provider.acquire("node", uuid4()))
    await asyncio.sleep(0.02)

    acquiring.cancel()
    with pytest.raises(asyncio.CancelledError):
        await acquiring

    # Creation is still in flight in the cloud
    assert provider.deleted == []
    await provider.aclose()
    assert provider.created == ["node-0"]
    assert provider.deleted == ["node-0"]
    assert "vm.acquired" not in metrics.snapshot()["counters"]


@pytest.mark.asyncio
async def test_release_is_idempotent(provider):
    lease = await provider.acquire("node", uuid4())

    lease.release()
    provider.release(lease)
    await provider.aclose()

    assert lease.released
    assert provider.deleted == [lease.instance]
    assert provider.acquire_calls == 1


@pytest.mark.asyncio
async def test_release_does_not_block_caller(provider):
    lease = await provider.acquire("node", uuid4())

    provider.release(lease)

    # Deletion is scheduled, not performed inline
    assert provider.deleted == []
    await provider.aclose()
    assert provider.deleted == [lease.instance]


@pytest.mark.asyncio
async def test_release_failure_is_logged_not_raised(provider, caplog):
    lease = await provider.acquire("node", uuid4())
    provider.fail_delete.add(lease.instance)

    with caplog.at_level(logging.ERROR, logger="kvas.vm.base"):
        provider.release(lease)
        await provider.aclose()

    assert provider.deleted == []
    assert any(lease.instance in r.getMessage() for r in caplog.records)
    assert metrics.snapshot()["counters"]["vm.release_failed"] == 1


@pytest.mark.asyncio
async def test_release_closes_open_shell(provider, executor):
    lease = await provider.acquire("node", uuid4())
    await executor.run(lease, "uptime")
    assert lease.shell is not None

    provider.release(lease)
    await provider.aclose()

    assert lease.shell is None
    assert provider.closed_shells == [lease.instance]
