"""KVAS background tasks."""

from kvas.tasks.runner import TaskRunner

__all__ = ["TaskRunner"]
