"""API request/response schemas."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from kvas.models import Topology


class VmSummarySchema(BaseModel):
    """Provisioned VM as seen by API clients."""

    instance: str
    address: str
    external_address: str


class LaunchTaskRequest(BaseModel):
    """Launch task request."""

    image: str = Field(..., min_length=1, description="Key-value store container image")
    node_count: int = Field(..., ge=1, le=64, description="Number of store nodes")
    topology: Topology = Field(..., description="Cluster topology: replication or naive-sharding")


class TaskResponse(BaseModel):
    """Task response."""

    task_id: UUID
    image: str
    node_count: int
    topology: str
    state: str
    client: Optional[VmSummarySchema] = None
    nodes: list[VmSummarySchema] = Field(default_factory=list)
    leader: Optional[str] = Field(None, description="Instance name of the leader node")
    created_at: datetime
    updated_at: datetime


class ListTasksResponse(BaseModel):
    """List tasks response."""

    tasks: list[TaskResponse]


class CancelTaskResponse(BaseModel):
    """Cancel task response."""

    ok: bool
    state: str


class LogUrlsResponse(BaseModel):
    """Signed download URLs for a task's archived logs."""

    task_id: UUID
    urls: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class MetricsResponse(BaseModel):
    """Metrics snapshot."""

    counters: dict[str, float]
    gauges: dict[str, float]
    histograms: dict[str, dict[str, Any]]
