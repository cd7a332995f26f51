"""REST API router."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from kvas.api.deps import get_engine, verify_api_key
from kvas.api.schemas import (
    CancelTaskResponse,
    HealthResponse,
    LaunchTaskRequest,
    ListTasksResponse,
    LogUrlsResponse,
    MetricsResponse,
    TaskResponse,
)
from kvas.engine import LoadTestEngine, TaskNotFound, UnknownTopology
from kvas.observability.metrics import metrics

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])

VERSION = "0.1.0"


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=VERSION)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics():
    """Snapshot of in-process counters, gauges and histograms."""
    return MetricsResponse(**metrics.snapshot())


# ============================================================================
# Tasks
# ============================================================================


@router.post("/tasks", response_model=TaskResponse, status_code=201)
async def launch_task(
    request: LaunchTaskRequest,
    engine: LoadTestEngine = Depends(get_engine),
):
    """
    Launch a load-test task.

    Responds as soon as the task is registered; provisioning and the test run
    continue in the background. Poll the task to follow its state.
    """
    try:
        task = engine.launch_task(
            image=request.image,
            node_count=request.node_count,
            topology=request.topology,
        )
    except (UnknownTopology, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TaskResponse(**task.to_view())


@router.get("/tasks", response_model=ListTasksResponse)
async def list_tasks(engine: LoadTestEngine = Depends(get_engine)):
    """List every task known to this process."""
    return ListTasksResponse(
        tasks=[TaskResponse(**task.to_view()) for task in engine.list_tasks()]
    )


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, engine: LoadTestEngine = Depends(get_engine)):
    """Get task by ID."""
    try:
        task = engine.get_task(task_id)
    except TaskNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskResponse(**task.to_view())


@router.post("/tasks/{task_id}/cancel", response_model=CancelTaskResponse)
async def cancel_task(task_id: UUID, engine: LoadTestEngine = Depends(get_engine)):
    """Cancel a running task. Its VMs are released during cleanup."""
    try:
        ok = engine.cancel_task(task_id)
        task = engine.get_task(task_id)
    except TaskNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    return CancelTaskResponse(ok=ok, state=task.state.value)


@router.get("/tasks/{task_id}/logs", response_model=LogUrlsResponse)
async def get_task_logs(task_id: UUID, engine: LoadTestEngine = Depends(get_engine)):
    """Signed URLs for the stdout/stderr files archived by a task."""
    try:
        urls = await engine.get_log_urls(task_id)
    except TaskNotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    return LogUrlsResponse(task_id=task_id, urls=urls)
