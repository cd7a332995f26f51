"""Blob storage for archived command logs."""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """Durable key/bytes store. Keys look like `task_id/instance/filename`."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Store bytes under a key, replacing any previous value."""
        ...

    @abstractmethod
    async def signed_urls(self, prefix: str) -> list[str]:
        """Return time-limited download URLs for every key under a prefix."""
        ...

    def close(self) -> None:
        """Release client resources."""
