"""API dependencies."""

import logging
import secrets

from fastapi import Header, HTTPException, Request

from kvas.config import Environment, settings
from kvas.engine import LoadTestEngine

logger = logging.getLogger("kvas.api")


def get_engine(request: Request) -> LoadTestEngine:
    """Return the engine built at application startup."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


async def verify_api_key(
    authorization: str | None = Header(None),
    x_api_key: str | None = Header(None, alias="X-API-Key"),
) -> None:
    """
    Verify the shared API key.

    Accepts `Authorization: Bearer <key>` or `X-API-Key: <key>`. Fails closed:
    without a configured key every request is rejected unless insecure dev
    mode is explicitly enabled.
    """
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        return

    api_key = None
    if authorization and authorization.startswith("Bearer "):
        api_key = authorization[len("Bearer "):]
    elif x_api_key:
        api_key = x_api_key

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail="Missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.api_key or not secrets.compare_digest(api_key, settings.api_key):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")


def validate_auth_config() -> None:
    """Refuse to start with an unauthenticated API outside development."""
    if settings.api_key:
        return
    if settings.allow_insecure_dev and settings.env == Environment.DEVELOPMENT:
        logger.warning("Running without API authentication (insecure dev mode)")
        return
    raise RuntimeError(
        "No API key configured. Set KVAS_API_KEY, or KVAS_ALLOW_INSECURE_DEV=true "
        "in development."
    )
