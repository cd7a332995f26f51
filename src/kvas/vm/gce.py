"""Google Compute Engine VM provider."""

import asyncio
import logging
from pathlib import Path
from typing import Optional
from uuid import UUID, uuid4

from google.cloud import compute_v1
from tenacity import RetryError, Retrying, stop_after_attempt, wait_fixed

from kvas.errors import ConfigurationError, ProvisionError
from kvas.vm.base import RemoteShell, VirtualMachineProvider, VmLease
from kvas.vm.ssh import ParamikoShell

logger = logging.getLogger(__name__)


class GceProvider(VirtualMachineProvider):
    """Creates one Compute Engine instance per lease and deletes it on release."""

    def __init__(
        self,
        project: str,
        zone: str,
        machine_type: str,
        source_image: str,
        ssh_login: str,
        ssh_key_file: str,
        disk_size_gb: int = 20,
        service_account_email: Optional[str] = None,
        ssh_port: int = 22,
        lookup_attempts: int = 3,
        lookup_wait_seconds: float = 1.0,
    ):
        super().__init__()
        self.project = project
        self.zone = zone
        self.machine_type = machine_type
        self.source_image = source_image
        self.disk_size_gb = disk_size_gb
        self.service_account_email = service_account_email
        self.ssh_login = ssh_login
        self.ssh_key_file = ssh_key_file
        self.ssh_port = ssh_port
        self.lookup_attempts = lookup_attempts
        self.lookup_wait_seconds = lookup_wait_seconds
        try:
            self._ssh_public_key = Path(f"{ssh_key_file}.pub").read_text().strip()
        except OSError as e:
            raise ConfigurationError(f"cannot read public key for `{ssh_key_file}`: {e}") from e
        self._instances = compute_v1.InstancesClient()

    def new_shell(self, lease: VmLease) -> RemoteShell:
        return ParamikoShell(
            host=lease.external_address,
            username=self.ssh_login,
            key_file=self.ssh_key_file,
            port=self.ssh_port,
        )

    async def _create(self, role: str, task_id: UUID) -> VmLease:
        name = f"{role}-{uuid4()}"
        try:
            address, external_address = await asyncio.to_thread(self._insert_and_lookup, name)
        except Exception as e:
            logger.error(f"error while creating `{name}`: {e}")
            raise ProvisionError(role, str(task_id), str(e)) from e
        return VmLease(
            instance=name,
            address=address,
            external_address=external_address,
            task_id=task_id,
            role=role,
            provider=self,
        )

    def _insert_and_lookup(self, name: str) -> tuple[str, str]:
        operation = self._instances.insert(
            project=self.project,
            zone=self.zone,
            instance_resource=self._instance_resource(name),
        )
        operation.result()
        if operation.error_code:
            raise RuntimeError(f"{operation.error_code}: {operation.error_message}")

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.lookup_attempts),
                wait=wait_fixed(self.lookup_wait_seconds),
            ):
                with attempt:
                    instance = self._instances.get(
                        project=self.project, zone=self.zone, instance=name
                    )
        except RetryError as e:
            logger.error(f"Could not get information about {name}, deleting it")
            try:
                self._delete_instance(name)
            except Exception as delete_error:
                logger.error(f"error while shutting down `{name}`: {delete_error}")
            raise RuntimeError(f"lookup of `{name}` failed") from e.last_attempt.exception()

        interface = instance.network_interfaces[0]
        return interface.network_i_p, interface.access_configs[0].nat_i_p

    def _instance_resource(self, name: str) -> compute_v1.Instance:
        disk = compute_v1.AttachedDisk(
            boot=True,
            auto_delete=True,
            type_="PERSISTENT",
            device_name="disk-1",
            initialize_params=compute_v1.AttachedDiskInitializeParams(
                source_image=self.source_image,
                disk_size_gb=self.disk_size_gb,
            ),
        )
        network = compute_v1.NetworkInterface(
            name="default",
            access_configs=[
                compute_v1.AccessConfig(
                    name="External NAT",
                    type_="ONE_TO_ONE_NAT",
                    network_tier="STANDARD",
                )
            ],
        )
        metadata = compute_v1.Metadata(
            items=[
                compute_v1.Items(key="ssh-keys", value=f"{self.ssh_login}:{self._ssh_public_key}")
            ]
        )
        service_accounts = []
        if self.service_account_email:
            service_accounts.append(
                compute_v1.ServiceAccount(
                    email=self.service_account_email,
                    scopes=["https://www.googleapis.com/auth/cloud-platform"],
                )
            )
        return compute_v1.Instance(
            name=name,
            machine_type=f"zones/{self.zone}/machineTypes/{self.machine_type}",
            disks=[disk],
            network_interfaces=[network],
            metadata=metadata,
            service_accounts=service_accounts,
        )

    async def _delete(self, lease: VmLease) -> None:
        await asyncio.to_thread(self._delete_instance, lease.instance)

    def _delete_instance(self, name: str) -> None:
        operation = self._instances.delete(project=self.project, zone=self.zone, instance=name)
        operation.result()
        if operation.error_code:
            raise RuntimeError(f"{operation.error_code}: {operation.error_message}")

    async def aclose(self) -> None:
        await super().aclose()
        self._instances.transport.close()
