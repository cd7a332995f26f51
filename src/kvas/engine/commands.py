"""Shell command sequences issued to client and node VMs."""

import shlex
from dataclasses import dataclass


@dataclass(frozen=True)
class WorkloadCommands:
    """Builds the commands for every orchestration step except node bootstrap."""

    node_container: str = "kvnode"
    node_port: int = 8080
    loadtest_image: str = "loadtester:latest"
    loadtest_args: str = ""

    def node_setup(self, image: str) -> list[str]:
        """Pull the key-value store image and tag it under the container name."""
        quoted = shlex.quote(image)
        return [
            "sudo gcloud auth configure-docker --quiet",
            f"sudo docker pull {quoted}",
            f"sudo docker tag {quoted} {self.node_container}",
        ]

    def client_setup(self) -> list[str]:
        """Log in to the registry and pull the load generator."""
        return [
            "sudo gcloud auth configure-docker --quiet",
            f"sudo docker pull {shlex.quote(self.loadtest_image)}",
        ]

    def load_test(self, leader_address: str) -> str:
        args = f" {self.loadtest_args}" if self.loadtest_args else ""
        return (
            f"sudo docker run --rm --network host {shlex.quote(self.loadtest_image)} "
            f"--target {leader_address}:{self.node_port}{args}"
        )

    def node_logs(self) -> str:
        return f"sudo docker logs {self.node_container}"
