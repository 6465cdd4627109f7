from __future__ import annotations

import base64

import pytest

from tasklens.imaging.blob_store import InMemoryBlobStore, LocalBlobStore
from tasklens.imaging.transport import ImageTransport, parse_data_url
from tasklens.kernel.errors import InvalidImageFormatError, ReferenceNotFoundError
from tests.support.images import PNG_BYTES, PNG_DATA_URL, data_url

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


async def test_parse_inline_png():
    payload = parse_data_url(PNG_DATA_URL)
    assert payload.media_type == "image/png"
    assert payload.data == PNG_BYTES
    assert payload.to_data_url() == PNG_DATA_URL


@pytest.mark.parametrize(
    "value",
    [
        "https://example.com/image.png",
        "data:image/png,not-base64-marked",
        "data:image/png;base64,",
        "data:image/png;base64,@@@not base64@@@",
    ],
)
async def test_parse_rejects_malformed_payloads(value: str):
    with pytest.raises(InvalidImageFormatError):
        parse_data_url(value)


async def test_parse_rejects_media_type_outside_allow_list():
    with pytest.raises(InvalidImageFormatError) as excinfo:
        parse_data_url(data_url(b"%PDF-1.4", "application/pdf"))
    assert excinfo.value.meta["media_type"] == "application/pdf"


async def test_parse_rejects_oversized_payload():
    with pytest.raises(InvalidImageFormatError) as excinfo:
        parse_data_url(PNG_DATA_URL, max_bytes=10)
    assert excinfo.value.meta["max_bytes"] == 10


async def test_reference_is_consumed_exactly_once():
    store = InMemoryBlobStore()
    transport = ImageTransport(store)

    reference = await transport.stage(PNG_DATA_URL)
    payload = await transport.resolve(storage_id=reference)
    assert payload.data == PNG_BYTES
    assert reference not in store.objects

    with pytest.raises(ReferenceNotFoundError):
        await transport.resolve(storage_id=reference)


async def test_stage_validates_before_storing():
    store = InMemoryBlobStore()
    transport = ImageTransport(store)
    with pytest.raises(InvalidImageFormatError):
        await transport.stage("data:text/plain;base64," + base64.b64encode(b"hi").decode())
    assert store.objects == {}


async def test_resolve_requires_a_source():
    transport = ImageTransport(InMemoryBlobStore())
    with pytest.raises(InvalidImageFormatError):
        await transport.resolve()


async def test_delete_failure_does_not_fail_resolution():
    class StickyBlobStore(InMemoryBlobStore):
        async def delete(self, reference: str) -> None:
            raise RuntimeError("storage offline")

    store = StickyBlobStore()
    transport = ImageTransport(store)
    reference = await store.store(PNG_DATA_URL.encode())

    payload = await transport.resolve(storage_id=reference)
    assert payload.media_type == "image/png"


async def test_local_blob_store_round_trip(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    reference = await store.store(b"hello")

    assert await store.get(reference) == b"hello"
    await store.delete(reference)
    assert await store.get(reference) is None
    # Deleting twice is a no-op.
    await store.delete(reference)


async def test_local_blob_store_rejects_path_traversal(tmp_path):
    store = LocalBlobStore(str(tmp_path))
    assert await store.get("../etc/passwd") is None
    with pytest.raises(ValueError):
        await store.delete("blob_../../x/y")
