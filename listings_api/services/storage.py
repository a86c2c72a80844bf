from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from pathlib import Path, PurePosixPath
from typing import Protocol
from urllib.parse import urlparse

import httpx

from listings_api.core.config import Settings


log = logging.getLogger(__name__)


class StorageError(Exception):
    """A photo could not be written to or removed from the store."""


class PhotoStore(Protocol):
    async def save(self, *, key: str, data: bytes, content_type: str) -> str: ...

    async def delete(self, ref: str) -> None: ...

    def owns(self, ref: str) -> bool: ...


class LocalObjectStore:
    """
    Photos on local disk, served by the app under `public_path`.
    References look like "/uploads/<key>".
    """

    def __init__(self, base_dir: str, public_path: str = "/uploads"):
        self.base = Path(base_dir)
        self.base.mkdir(parents=True, exist_ok=True)
        self.public_path = "/" + public_path.strip("/")

    def put_bytes(self, *, key: str, data: bytes) -> Path:
        path = self.base / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def public_ref(self, key: str) -> str:
        return f"{self.public_path}/{key}"

    def owns(self, ref: str) -> bool:
        # only the bare "/uploads/<key>" form this store hands out; any host is foreign
        parsed = urlparse(ref)
        if parsed.scheme or parsed.netloc:
            return False
        return parsed.path.startswith(self.public_path + "/")

    def resolve_path(self, ref: str) -> Path:
        """
        Resolve a reference to a local filesystem path.

        Supports:
          - public references ("/uploads/<key>")
          - relative keys (resolved under self.base)
        URLs with a scheme or host are refused.
        """
        parsed = urlparse(ref)
        if parsed.scheme or parsed.netloc:
            raise ValueError(f"Not a local photo reference: {ref}")

        path = parsed.path
        if path.startswith(self.public_path + "/"):
            path = path[len(self.public_path) + 1 :]
        key = PurePosixPath(path)
        if key.is_absolute() or ".." in key.parts:
            raise ValueError(f"Reference escapes the upload directory: {ref}")
        return self.base / key

    async def save(self, *, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(self.put_bytes, key=key, data=data)
        except OSError as e:
            raise StorageError(f"could not write {key}: {e}") from e
        return self.public_ref(key)

    async def delete(self, ref: str) -> None:
        path = self.resolve_path(ref)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageError(f"could not delete {ref}: {e}") from e


class CdnObjectStore:
    """
    Photos on the image CDN, through its signed upload API.
    References are the CDN's https URLs.
    """

    API_BASE = "https://api.cloudinary.com/v1_1"
    DELIVERY_HOST = "res.cloudinary.com"

    def __init__(
        self,
        *,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "listings",
        max_width: int | None = 1200,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self._secret = api_secret
        self.folder = folder.strip("/")
        self.max_width = max_width
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def aclose(self) -> None:
        await self._client.aclose()

    def _sign(self, params: dict[str, str]) -> str:
        # sha1 over "k1=v1&k2=v2" sorted by key, secret appended
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
        return hashlib.sha1((to_sign + self._secret).encode("utf-8")).hexdigest()

    def _signed(self, params: dict[str, str]) -> dict[str, str]:
        params = {**params, "timestamp": str(int(time.time()))}
        return {**params, "signature": self._sign(params), "api_key": self.api_key}

    def public_id_for(self, ref: str) -> str:
        """
        https://res.cloudinary.com/<cloud>/image/upload/v123/<folder>/<name>.jpg
        -> "<folder>/<name>"
        """
        parsed = urlparse(ref)
        parts = parsed.path.split("/upload/", 1)
        if len(parts) != 2:
            raise ValueError(f"Not a CDN upload URL: {ref}")
        tail = parts[1].split("/")
        if tail and tail[0].startswith("v") and tail[0][1:].isdigit():
            tail = tail[1:]
        return str(PurePosixPath(*tail).with_suffix(""))

    def owns(self, ref: str) -> bool:
        parsed = urlparse(ref)
        return parsed.hostname == self.DELIVERY_HOST and parsed.path.startswith(f"/{self.cloud_name}/")

    async def _post(self, action: str, data: dict[str, str], files: dict | None = None) -> dict:
        url = f"{self.API_BASE}/{self.cloud_name}/image/{action}"
        try:
            resp = await self._client.post(url, data=data, files=files)
        except httpx.RequestError as e:
            raise StorageError(f"CDN {action} failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise StorageError(f"CDN {action} failed: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise StorageError(f"CDN {action} returned a non-JSON body") from e

    async def save(self, *, key: str, data: bytes, content_type: str) -> str:
        params = {"public_id": str(PurePosixPath(key).with_suffix("")), "folder": self.folder}
        if self.max_width:
            params["transformation"] = f"c_limit,w_{self.max_width}"
        body = await self._post("upload", self._signed(params), files={"file": (key, data, content_type)})
        url = body.get("secure_url") or body.get("url")
        if not url:
            raise StorageError("CDN upload response carries no URL")
        return url

    async def delete(self, ref: str) -> None:
        body = await self._post("destroy", self._signed({"public_id": self.public_id_for(ref)}))
        if body.get("result") not in ("ok", "not found"):
            raise StorageError(f"CDN destroy failed: {body.get('result')}")


def build_photo_store(s: Settings) -> PhotoStore:
    if s.storage_backend == "cdn":
        if not (s.cdn_cloud_name and s.cdn_api_key):
            raise RuntimeError("storage_backend=cdn requires CDN_CLOUD_NAME and CDN_API_KEY")
        return CdnObjectStore(
            cloud_name=s.cdn_cloud_name,
            api_key=s.cdn_api_key,
            api_secret=s.cdn_api_secret.get_secret_value(),
            folder=s.cdn_folder,
            max_width=s.cdn_max_width,
        )
    return LocalObjectStore(s.upload_dir, s.upload_public_path)


async def delete_quietly(store: PhotoStore, refs: list[str]) -> list[str]:
    """
    Remove the given refs that the store owns. Failures are logged, not raised.
    Returns the refs that could not be removed.
    """
    failed: list[str] = []
    for ref in refs:
        if not ref or not store.owns(ref):
            continue
        try:
            await store.delete(ref)
        except (StorageError, ValueError):
            log.warning("could not remove photo %s", ref, exc_info=True)
            failed.append(ref)
    return failed
