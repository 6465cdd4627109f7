"""
Image Transport

Normalizes an input image into a self-describing payload (media type + bytes).
Accepts either an inline base64 data URL or a reference to a blob previously
stored through a `BlobStore`. Resolving a reference consumes it: the blob is
deleted (best-effort) once its bytes have been read.
"""

from __future__ import annotations

import base64
import binascii
import re
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from tasklens.kernel.errors import InvalidImageFormatError, ReferenceNotFoundError

from .blob_store import BlobStore

logger = structlog.get_logger()

SUPPORTED_IMAGE_MEDIA_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/gif", "image/webp")

_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True, slots=True)
class ImagePayload:
    media_type: str
    data: bytes

    @property
    def byte_size(self) -> int:
        return len(self.data)

    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.base64_data()}"


def parse_data_url(
    image_data_url: str,
    allowed_media_types: Iterable[str] = SUPPORTED_IMAGE_MEDIA_TYPES,
    max_bytes: int | None = None,
) -> ImagePayload:
    """Decode a `data:<type>;base64,<data>` URL into an ImagePayload."""
    if not isinstance(image_data_url, str) or not image_data_url.startswith("data:"):
        raise InvalidImageFormatError(message="Image must be provided as a base64 data URL")

    match = _DATA_URL_RE.match(image_data_url.strip())
    if not match:
        raise InvalidImageFormatError(message="Invalid data URL format for image")

    media_type, encoded = match.group(1).strip().lower(), match.group(2)
    if media_type not in set(allowed_media_types):
        raise InvalidImageFormatError(
            message="Provided file is not a supported image",
            meta={"media_type": media_type},
        )

    try:
        data = base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageFormatError(message="Image data is not valid base64") from exc
    if not data:
        raise InvalidImageFormatError(message="Image data is empty")
    if max_bytes is not None and len(data) > max_bytes:
        raise InvalidImageFormatError(
            message="Image is too large",
            meta={"byte_size": len(data), "max_bytes": max_bytes},
        )

    return ImagePayload(media_type=media_type, data=data)


class ImageTransport:
    """Resolves inline payloads and blob references into ImagePayloads."""

    def __init__(
        self,
        blob_store: BlobStore,
        allowed_media_types: Iterable[str] = SUPPORTED_IMAGE_MEDIA_TYPES,
        max_bytes: int | None = None,
    ) -> None:
        self.blob_store = blob_store
        self.allowed_media_types = tuple(allowed_media_types)
        self.max_bytes = max_bytes

    def from_inline(self, image_data_url: str) -> ImagePayload:
        return parse_data_url(image_data_url, self.allowed_media_types, self.max_bytes)

    async def stage(self, image_data_url: str) -> str:
        """Store a data URL out-of-band and return its reference.

        The data URL is validated first so a bad payload never reaches storage.
        """
        payload = self.from_inline(image_data_url)
        reference = await self.blob_store.store(image_data_url.encode("utf-8"))
        logger.info(
            "Staged image payload",
            reference=reference,
            media_type=payload.media_type,
            byte_size=payload.byte_size,
        )
        return reference

    async def resolve_reference(self, reference: str) -> ImagePayload:
        """Read and consume a staged payload."""
        stored = await self.blob_store.get(reference)
        if stored is None:
            raise ReferenceNotFoundError(reference=reference)

        await self.discard(reference)

        try:
            image_data_url = stored.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidImageFormatError(message="Stored payload is not a data URL") from exc
        return self.from_inline(image_data_url)

    async def resolve(
        self,
        *,
        image_data_url: str | None = None,
        storage_id: str | None = None,
    ) -> ImagePayload:
        if image_data_url:
            return self.from_inline(image_data_url)
        if storage_id:
            return await self.resolve_reference(storage_id)
        raise InvalidImageFormatError(message="Provide either imageDataUrl or storageId")

    async def discard(self, reference: str) -> None:
        """Best-effort delete; failures are logged, never raised."""
        try:
            await self.blob_store.delete(reference)
        except Exception as exc:
            logger.warning("Failed to delete staged image payload", reference=reference, error=str(exc))
