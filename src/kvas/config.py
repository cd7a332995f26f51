"""KVAS configuration management."""

import os
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kvas.errors import ConfigurationError


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """KVAS configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="KVAS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # General
    env: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    debug: bool = False

    # Security (v0 - simple shared token)
    allow_insecure_dev: bool = Field(default=False, description="Allow unauthenticated in dev")
    api_key: Optional[str] = Field(default=None, validate_default=True)

    # CORS configuration (explicit allowlist)
    cors_allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins for the browser UI",
    )
    cors_allow_credentials: bool = True
    cors_allowed_methods: list[str] = Field(default=["GET", "POST", "OPTIONS"])
    cors_allowed_headers: list[str] = Field(
        default=["Authorization", "Content-Type", "X-API-Key"]
    )

    # Cloud (Google Compute Engine)
    gcp_project: str = "kvas-loadtester"
    gcp_zone: str = "us-east1-b"
    machine_type: str = "g1-small"
    source_image: str = "projects/kvas-loadtester/global/images/kvnode-base-image"
    disk_size_gb: int = Field(default=20, ge=10)
    service_account_email: Optional[str] = Field(
        default="kvnode@kvas-loadtester.iam.gserviceaccount.com",
        description="Service account attached to VMs (object storage access)",
    )
    provision_lookup_attempts: int = Field(
        default=3, ge=1, description="Attempts to read back a freshly created instance"
    )

    # Remote shell
    ssh_login: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KVAS_SSH_LOGIN", "SSH_LOGIN", "ssh_login"),
    )
    ssh_key_file: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("KVAS_SSH_KEY_FILE", "SSH_FILE", "ssh_key_file"),
    )
    ssh_port: int = 22
    ssh_connect_attempts: int = Field(default=3, ge=1, description="SSH connection attempts")
    ssh_retry_wait_seconds: float = Field(default=5.0, ge=0, description="Wait between attempts")

    # Log archive
    log_bucket: str = "kvas-loadtester-logs"
    log_url_ttl_hours: int = Field(default=3, ge=1, le=168)

    # Workload
    node_port: int = 8080
    node_container: str = "kvnode"
    loadtest_image: str = "us-docker.pkg.dev/kvas-loadtester/kvas/loadtester:latest"
    loadtest_args: str = "--duration 60s --clients 16"

    # Tasks
    task_timeout_seconds: float = Field(
        default=3600, gt=0, description="Overall deadline for one task"
    )
    shutdown_grace_seconds: float = Field(
        default=10, ge=0, description="Time given to running tasks on shutdown"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Validators
    @field_validator("port", "node_port", "ssh_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port number range."""
        if not 1 <= v <= 65535:
            raise ValueError(f"Port must be between 1 and 65535, got {v}")
        return v

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str], info) -> Optional[str]:
        """Validate API key is set when auth is required."""
        allow_insecure = info.data.get("allow_insecure_dev", False)
        env = info.data.get("env")

        if env in [Environment.PRODUCTION, Environment.STAGING] and not v:
            raise ValueError(f"api_key is required in {env.value} environment")

        if not v and not allow_insecure:
            raise ValueError("api_key is required when allow_insecure_dev=False")

        return v


def require_remote_credentials(config: Settings) -> None:
    """
    Fail fast when the service cannot reach its VMs.

    Raises:
        ConfigurationError: SSH login or key file is missing or unreadable.
    """
    if not config.ssh_login:
        raise ConfigurationError("`SSH_LOGIN` env variable is not set")
    if not config.ssh_key_file:
        raise ConfigurationError("`SSH_FILE` env variable is not set")
    for path in (config.ssh_key_file, f"{config.ssh_key_file}.pub"):
        if not os.access(path, os.R_OK):
            raise ConfigurationError(f"SSH key file `{path}` is missing or unreadable")


settings = Settings()
