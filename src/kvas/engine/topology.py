"""Cluster topology strategies: how leader and follower nodes are started."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

from kvas.errors import UnknownTopology
from kvas.models import Topology


@dataclass(frozen=True)
class ClusterTopology(ABC):
    """Maps leader/follower addresses to the node bootstrap commands."""

    port: int = 8080
    container: str = "kvnode"

    @property
    @abstractmethod
    def topology(self) -> Topology:
        ...

    @abstractmethod
    def leader_command(self, leader_address: str) -> str:
        """Command that starts the leader node."""
        ...

    @abstractmethod
    def follower_command(self, leader_address: str, self_address: str) -> str:
        """Command that starts a follower and points it at the leader."""
        ...

    def _run(self, args: str) -> str:
        return (
            f"sudo docker run -d --name {self.container} --network host "
            f"{self.container} {args}"
        )


@dataclass(frozen=True)
class ReplicationTopology(ClusterTopology):
    """Every node holds the full keyspace; followers replicate from the leader."""

    @property
    def topology(self) -> Topology:
        return Topology.REPLICATION

    def leader_command(self, leader_address: str) -> str:
        return self._run(
            f"--mode replication --role leader --listen {leader_address}:{self.port}"
        )

    def follower_command(self, leader_address: str, self_address: str) -> str:
        return self._run(
            f"--mode replication --role follower --listen {self_address}:{self.port} "
            f"--leader {leader_address}:{self.port}"
        )


@dataclass(frozen=True)
class NaiveShardingTopology(ClusterTopology):
    """The leader routes keys; each follower registers as a shard with it."""

    @property
    def topology(self) -> Topology:
        return Topology.NAIVE_SHARDING

    def leader_command(self, leader_address: str) -> str:
        return self._run(
            f"--mode sharding --role coordinator --listen {leader_address}:{self.port}"
        )

    def follower_command(self, leader_address: str, self_address: str) -> str:
        return self._run(
            f"--mode sharding --role shard --listen {self_address}:{self.port} "
            f"--coordinator {leader_address}:{self.port}"
        )


_STRATEGIES: dict[Topology, type[ClusterTopology]] = {
    Topology.REPLICATION: ReplicationTopology,
    Topology.NAIVE_SHARDING: NaiveShardingTopology,
}


def parse_topology(value: Union[str, Topology]) -> Topology:
    """Parse a topology name, failing fast on unknown values."""
    try:
        return Topology(value)
    except ValueError:
        raise UnknownTopology(str(value)) from None


def get_topology(
    value: Union[str, Topology], port: int = 8080, container: str = "kvnode"
) -> ClusterTopology:
    """Return the strategy for a topology name."""
    return _STRATEGIES[parse_topology(value)](port=port, container=container)
