"""Image transport and blob handoff."""

from .blob_store import BlobStore, InMemoryBlobStore, LocalBlobStore
from .transport import SUPPORTED_IMAGE_MEDIA_TYPES, ImagePayload, ImageTransport, parse_data_url

__all__ = [
    "BlobStore",
    "InMemoryBlobStore",
    "LocalBlobStore",
    "SUPPORTED_IMAGE_MEDIA_TYPES",
    "ImagePayload",
    "ImageTransport",
    "parse_data_url",
]
