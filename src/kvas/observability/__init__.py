"""Observability helpers for KVAS."""

from kvas.observability.metrics import metrics

__all__ = ["metrics"]
