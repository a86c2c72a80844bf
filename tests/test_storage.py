import hashlib
from urllib.parse import parse_qs

import httpx
import pytest

from listings_api.core.config import Settings
from listings_api.services.storage import (
    CdnObjectStore,
    LocalObjectStore,
    StorageError,
    build_photo_store,
    delete_quietly,
)

CDN_URL = "https://res.cloudinary.com/demo/image/upload/v1712345678/listings/img_abc.jpg"


def _cdn(handler) -> CdnObjectStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CdnObjectStore(cloud_name="demo", api_key="key", api_secret="secret", client=client)


@pytest.mark.asyncio
async def test_local_store_save_and_delete(tmp_path):
    store = LocalObjectStore(str(tmp_path), "/uploads")
    ref = await store.save(key="img_1.jpg", data=b"abc", content_type="image/jpeg")

    assert ref == "/uploads/img_1.jpg"
    assert store.owns(ref)
    assert (tmp_path / "img_1.jpg").read_bytes() == b"abc"

    await store.delete(ref)
    assert not (tmp_path / "img_1.jpg").exists()
    # deleting twice is not an error
    await store.delete(ref)


def test_local_store_reference_rules(tmp_path):
    store = LocalObjectStore(str(tmp_path), "uploads/")
    assert store.owns("/uploads/a.jpg")
    assert not store.owns("https://cdn.example/a.jpg")
    assert store.resolve_path("/uploads/a.jpg") == tmp_path / "a.jpg"

    with pytest.raises(ValueError):
        store.resolve_path("/uploads/../secret")
    with pytest.raises(ValueError):
        store.resolve_path("s3://bucket/a.jpg")


@pytest.mark.parametrize(
    "ref",
    [
        "https://elsewhere.example/uploads/img_victim.png",
        "http://host/uploads/img_victim.png",
        "//elsewhere.example/uploads/img_victim.png",
    ],
)
def test_local_store_does_not_own_urls_with_a_host(tmp_path, ref):
    store = LocalObjectStore(str(tmp_path), "/uploads")
    assert not store.owns(ref)
    with pytest.raises(ValueError):
        store.resolve_path(ref)


def test_cdn_reference_rules():
    store = _cdn(lambda request: httpx.Response(500))
    assert store.owns(CDN_URL)
    assert not store.owns("https://res.cloudinary.com/other/image/upload/a.jpg")
    assert not store.owns("/uploads/a.jpg")
    assert store.public_id_for(CDN_URL) == "listings/img_abc"


@pytest.mark.asyncio
async def test_cdn_upload_returns_secure_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"secure_url": CDN_URL, "public_id": "listings/img_abc"})

    store = _cdn(handler)
    ref = await store.save(key="img_abc.jpg", data=b"\xff\xd8", content_type="image/jpeg")
    assert ref == CDN_URL
    assert seen["url"] == "https://api.cloudinary.com/v1_1/demo/image/upload"


@pytest.mark.asyncio
async def test_cdn_delete_sends_signed_public_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return httpx.Response(200, json={"result": "ok"})

    await _cdn(handler).delete(CDN_URL)

    assert seen["public_id"] == "listings/img_abc"
    assert seen["api_key"] == "key"
    expected = hashlib.sha1(
        f"public_id=listings/img_abc&timestamp={seen['timestamp']}secret".encode()
    ).hexdigest()
    assert seen["signature"] == expected


@pytest.mark.asyncio
async def test_cdn_failures_raise_storage_error():
    store = _cdn(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(StorageError):
        await store.save(key="img.jpg", data=b"x", content_type="image/jpeg")


class _BrokenStore:
    def owns(self, ref: str) -> bool:
        return ref.startswith("/uploads/")

    async def delete(self, ref: str) -> None:
        raise StorageError("disk gone")


@pytest.mark.asyncio
async def test_delete_quietly_reports_instead_of_raising():
    failed = await delete_quietly(_BrokenStore(), ["/uploads/a.jpg", "https://cdn.example/b.jpg", ""])
    assert failed == ["/uploads/a.jpg"]


def test_build_photo_store(tmp_path):
    local = build_photo_store(Settings(storage_backend="local", upload_dir=str(tmp_path)))
    assert isinstance(local, LocalObjectStore)

    with pytest.raises(RuntimeError):
        build_photo_store(Settings(storage_backend="cdn", cdn_cloud_name=None, cdn_api_key=None))
