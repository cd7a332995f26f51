"""KVAS API layer."""

from kvas.api.router import router

__all__ = ["router"]
