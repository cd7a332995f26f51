"""Log archive storage."""

from kvas.storage.base import BlobStore

__all__ = ["BlobStore"]
