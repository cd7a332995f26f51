"""Remote command execution on VM leases."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from tenacity import AsyncRetrying, RetryCallState, RetryError, stop_after_attempt, wait_fixed

from kvas.errors import CommandError, RemoteConnectionError
from kvas.observability.metrics import metrics
from kvas.storage.base import BlobStore
from kvas.vm.base import ExecResult, VmLease

logger = logging.getLogger(__name__)

# Characters dropped from a command when deriving its log file names
_FILENAME_DROP = str.maketrans("", "", "|'\"/")
_EXCERPT_BYTES = 2048


def capture_filenames(command: str) -> tuple[str, str]:
    """Return the (stdout, stderr) file names used when capturing a command."""
    name = command.translate(_FILENAME_DROP).replace(" ", "-")
    return f"{name}.out.txt", f"{name}.err.txt"


def _excerpt(data: bytes) -> str:
    return data[-_EXCERPT_BYTES:].decode("utf-8", errors="replace").strip()


class RemoteExecutor:
    """
    Runs shell commands on leased VMs.

    The remote shell of a lease is opened on first use and reused for later
    commands until the lease's channel is closed. Commands on one lease run
    strictly one at a time; different leases are independent.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        connect_attempts: int = 3,
        retry_wait_seconds: float = 5.0,
    ):
        self.blob_store = blob_store
        self.connect_attempts = connect_attempts
        self.retry_wait_seconds = retry_wait_seconds

    @asynccontextmanager
    async def channel(self, lease: VmLease) -> AsyncIterator[VmLease]:
        """Scope a lease's remote shell to a block; it is closed on exit."""
        try:
            yield lease
        finally:
            lease.close_shell()

    async def run(self, lease: VmLease, command: str, capture_logs: bool = False) -> ExecResult:
        """
        Run a command on a lease.

        With capture_logs, stdout/stderr are redirected to files on the VM and
        both files are archived to blob storage whether or not the command
        succeeds.

        Raises:
            RemoteConnectionError: The shell could not be opened.
            CommandError: The command exited with a non-zero status.
        """
        async with lease.lock:
            if capture_logs:
                return await self._run_captured(lease, command)
            result = await self._exec(lease, command)
            if not result.ok:
                self._command_failed(lease, command, result.exit_code, result.stderr)
            return result

    async def _run_captured(self, lease: VmLease, command: str) -> ExecResult:
        # With a compound command only the last one's output is captured
        out_file, err_file = capture_filenames(command)
        result = await self._exec(lease, f"{command} > '{out_file}' 2> '{err_file}'")

        artifacts = {}
        for filename in (out_file, err_file):
            artifacts[filename] = await self._read_file(lease, filename)
        await self._archive(lease, artifacts)

        if not result.ok:
            self._command_failed(lease, command, result.exit_code, artifacts[err_file])
        return ExecResult(
            exit_code=result.exit_code,
            stdout=artifacts[out_file],
            stderr=artifacts[err_file],
        )

    async def _exec(self, lease: VmLease, command: str) -> ExecResult:
        await self._ensure_connected(lease)
        result = await lease.shell.exec(command)
        logger.info(f"{lease.instance} - cmd `{command}` exited with code {result.exit_code}")
        logger.debug(f"{lease.instance} - cmd `{command}`, out: {_excerpt(result.stdout)}")
        return result

    def _command_failed(self, lease: VmLease, command: str, exit_code: int, stderr: bytes) -> None:
        excerpt = _excerpt(stderr)
        metrics.inc_counter("commands.failed")
        logger.error(
            f"{lease.instance} - cmd `{command}` exited with code {exit_code}, err: {excerpt}"
        )
        raise CommandError(lease.instance, command, exit_code, excerpt)

    async def _read_file(self, lease: VmLease, filename: str) -> bytes:
        try:
            result = await lease.shell.exec(f"cat '{filename}'")
        except Exception as e:
            logger.error(f"{lease.instance} - failed to read captured log `{filename}`: {e}")
            return b""
        if not result.ok:
            logger.warning(f"{lease.instance} - could not read captured log `{filename}`")
            return b""
        return result.stdout

    async def _archive(self, lease: VmLease, artifacts: dict[str, bytes]) -> None:
        for filename, data in artifacts.items():
            key = f"{lease.task_id}/{lease.instance}/{filename}"
            try:
                await self.blob_store.put(key, data)
            except Exception as e:
                logger.error(f"{lease.instance} - failed to archive `{key}`: {e}", exc_info=True)

    async def _ensure_connected(self, lease: VmLease) -> None:
        if lease.shell is not None and lease.shell.connected:
            return
        lease.close_shell()
        shell = lease.provider.new_shell(lease)

        def log_attempt(retry_state: RetryCallState) -> None:
            metrics.inc_counter("ssh.connect_failures")
            logger.warning(
                f"{lease.instance} - could not establish ssh connection - attempt "
                f"{retry_state.attempt_number} out of {self.connect_attempts}: "
                f"{retry_state.outcome.exception()}"
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.connect_attempts),
                wait=wait_fixed(self.retry_wait_seconds),
                after=log_attempt,
            ):
                with attempt:
                    await shell.connect()
        except RetryError as e:
            shell.close()
            raise RemoteConnectionError(lease.instance, self.connect_attempts) from (
                e.last_attempt.exception()
            )
        lease.shell = shell
