"""
Attachment blob storage.

Only deletion is needed by this service. ``LocalObjectStorage`` keeps blobs
at ``<root>/<bucket>/<key>`` on the local filesystem.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

from modsentry.util.logger import get_logger

logger = get_logger("object_storage")


class ObjectStorage(Protocol):
    async def delete_object(self, bucket: str, key: str) -> None: ...


class LocalObjectStorage:
    """Filesystem-backed object storage.

    Args:
        root: Directory holding one sub-directory per bucket.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def object_path(self, bucket: str, key: str) -> Path:
        """Resolve the blob path, refusing keys that escape the bucket."""
        bucket_dir = (self.root / bucket).resolve()
        path = (bucket_dir / key).resolve()
        if bucket_dir != path and bucket_dir not in path.parents:
            raise ValueError(f"object key {key!r} escapes bucket {bucket!r}")
        return path

    async def put_object(self, bucket: str, key: str, data: bytes) -> Path:
        path = self.object_path(bucket, key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        return path

    async def delete_object(self, bucket: str, key: str) -> None:
        """Remove the blob. Raises FileNotFoundError when it does not exist."""
        path = self.object_path(bucket, key)
        await asyncio.to_thread(path.unlink)
        logger.debug("[OBJECT STORAGE] Deleted %s/%s", bucket, key)
