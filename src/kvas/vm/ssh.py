"""Paramiko-backed remote shell."""

import asyncio
import logging
import time
from typing import Optional

import paramiko

from kvas.vm.base import ExecResult, RemoteShell

logger = logging.getLogger(__name__)

_CHUNK_BYTES = 32768
_POLL_SECONDS = 0.05


class ParamikoShell(RemoteShell):
    """SSH channel to a VM using key-file authentication."""

    def __init__(
        self,
        host: str,
        username: str,
        key_file: str,
        port: int = 22,
        connect_timeout: float = 30.0,
    ):
        self.host = host
        self.username = username
        self.key_file = key_file
        self.port = port
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None

    @property
    def connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    async def connect(self) -> None:
        await asyncio.to_thread(self._connect)

    def _connect(self) -> None:
        self.close()
        client = paramiko.SSHClient()
        # VMs are created per task; their host keys are never known in advance
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=self.key_file,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except Exception:
            client.close()
            raise
        self._client = client

    async def exec(self, command: str) -> ExecResult:
        if not self.connected:
            raise paramiko.SSHException(f"not connected to {self.host}")
        return await asyncio.to_thread(self._exec, command)

    def _exec(self, command: str) -> ExecResult:
        channel = self._client.get_transport().open_session()
        try:
            channel.exec_command(command)
            out, err = bytearray(), bytearray()
            # Both streams are drained together until the exit status arrives
            while True:
                drained = False
                if channel.recv_ready():
                    out += channel.recv(_CHUNK_BYTES)
                    drained = True
                if channel.recv_stderr_ready():
                    err += channel.recv_stderr(_CHUNK_BYTES)
                    drained = True
                if drained:
                    continue
                if channel.exit_status_ready():
                    break
                time.sleep(_POLL_SECONDS)
            while channel.recv_ready():
                out += channel.recv(_CHUNK_BYTES)
            while channel.recv_stderr_ready():
                err += channel.recv_stderr(_CHUNK_BYTES)
            exit_code = channel.recv_exit_status()
        finally:
            channel.close()
        return ExecResult(exit_code=exit_code, stdout=bytes(out), stderr=bytes(err))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
