"""KVAS main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kvas.api import router
from kvas.api.deps import validate_auth_config
from kvas.config import Settings, require_remote_credentials, settings
from kvas.engine import LoadTestEngine, TaskRegistry
from kvas.engine.commands import WorkloadCommands
from kvas.storage.gcs import GcsBlobStore
from kvas.tasks import TaskRunner
from kvas.vm.executor import RemoteExecutor
from kvas.vm.gce import GceProvider

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("kvas")


def build_engine(config: Settings) -> LoadTestEngine:
    """Wire the engine and its collaborators from settings."""
    provider = GceProvider(
        project=config.gcp_project,
        zone=config.gcp_zone,
        machine_type=config.machine_type,
        source_image=config.source_image,
        ssh_login=config.ssh_login,
        ssh_key_file=config.ssh_key_file,
        disk_size_gb=config.disk_size_gb,
        service_account_email=config.service_account_email,
        ssh_port=config.ssh_port,
        lookup_attempts=config.provision_lookup_attempts,
    )
    blob_store = GcsBlobStore(
        project=config.gcp_project,
        bucket=config.log_bucket,
        url_ttl_hours=config.log_url_ttl_hours,
    )
    executor = RemoteExecutor(
        blob_store=blob_store,
        connect_attempts=config.ssh_connect_attempts,
        retry_wait_seconds=config.ssh_retry_wait_seconds,
    )
    workload = WorkloadCommands(
        node_container=config.node_container,
        node_port=config.node_port,
        loadtest_image=config.loadtest_image,
        loadtest_args=config.loadtest_args,
    )
    return LoadTestEngine(
        registry=TaskRegistry(),
        provider=provider,
        executor=executor,
        blob_store=blob_store,
        runner=TaskRunner(),
        workload=workload,
        task_timeout_seconds=config.task_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting KVAS load tester...")
    logger.info(f"Environment: {settings.env.value}")

    # Fail fast on missing credentials
    validate_auth_config()
    require_remote_credentials(settings)

    engine = build_engine(settings)
    app.state.engine = engine
    logger.info(f"Provisioning in {settings.gcp_project}/{settings.gcp_zone}")

    yield

    logger.info("Shutting down KVAS load tester...")
    await engine.runner.shutdown(timeout=settings.shutdown_grace_seconds)
    await engine.provider.aclose()
    engine.blob_store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="KVAS Load Tester",
    description="Provisions key-value store clusters on ephemeral VMs and load-tests them",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "kvas.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
