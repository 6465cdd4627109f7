"""
Blob storage for out-of-band image handoff.

Large payloads do not travel inside tool arguments; callers store them here
and pass the opaque reference instead.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os
import structlog

from tasklens.kernel.ids import is_prefixed_id, new_prefixed_id

logger = structlog.get_logger()


class BlobStore(Protocol):
    async def store(self, data: bytes) -> str:
        ...

    async def get(self, reference: str) -> bytes | None:
        ...

    async def delete(self, reference: str) -> None:
        ...


@dataclass(slots=True)
class InMemoryBlobStore:
    """Process-local blob store, used in development and tests."""

    objects: dict[str, bytes] = field(default_factory=dict)
    digests: dict[str, str] = field(default_factory=dict)

    async def store(self, data: bytes) -> str:
        reference = new_prefixed_id("blob")
        self.objects[reference] = bytes(data)
        self.digests[reference] = hashlib.sha256(data).hexdigest()
        return reference

    async def get(self, reference: str) -> bytes | None:
        return self.objects.get(reference)

    async def delete(self, reference: str) -> None:
        self.objects.pop(reference, None)
        self.digests.pop(reference, None)


class LocalBlobStore:
    """Local filesystem blob store with sharded paths."""

    def __init__(self, root_path: str) -> None:
        self.root_path = Path(root_path)
        self.root_path.mkdir(parents=True, exist_ok=True)

    def _build_path(self, reference: str) -> Path:
        if not is_prefixed_id(reference, "blob") or "/" in reference or "\\" in reference:
            raise ValueError(f"Invalid blob reference: {reference!r}")
        shard = reference.split("_", 1)[1][:2]
        return self.root_path / shard / reference

    async def store(self, data: bytes) -> str:
        reference = new_prefixed_id("blob")
        target_path = self._build_path(reference)
        await asyncio.to_thread(target_path.parent.mkdir, parents=True, exist_ok=True)

        async with aiofiles.open(target_path, "wb") as f:
            await f.write(data)

        logger.debug(
            "Stored blob",
            reference=reference,
            byte_size=len(data),
            sha256=hashlib.sha256(data).hexdigest(),
        )
        return reference

    async def get(self, reference: str) -> bytes | None:
        try:
            path = self._build_path(reference)
        except ValueError:
            return None
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def delete(self, reference: str) -> None:
        path = self._build_path(reference)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return None
