"""Object storage adapters: ``put(bytes, key) -> public URL``."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol
from urllib.parse import quote
from uuid import uuid4

import httpx

from .config import Settings, settings as default_settings
from .exceptions import UploadError

LOGGER = logging.getLogger(__name__)


def build_object_key(section_id: str, filename: str) -> str:
    """``{section_id}/{uuid}.{ext}``; files without an extension get ``.bin``."""

    extension = PurePosixPath(filename).suffix.lstrip(".").lower() or "bin"
    return f"{section_id}/{uuid4()}.{extension}"


class ObjectStorage(Protocol):
    async def put(self, data: bytes, key: str, *, content_type: Optional[str] = None) -> str:
        """Store ``data`` under ``key`` and return its public URL."""


class LocalObjectStorage:
    """Stores objects below a directory and serves them from ``base_url``."""

    def __init__(self, root: str | Path, base_url: Optional[str] = None) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/") if base_url else None

    def path_for(self, key: str) -> Path:
        target = (self.root / key).resolve()
        if self.root.resolve() not in target.parents:
            raise UploadError(f"Failed to upload file: key {key!r} escapes the storage root")
        return target

    async def put(self, data: bytes, key: str, *, content_type: Optional[str] = None) -> str:
        target = self.path_for(key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise UploadError(f"Failed to upload file: {exc.strerror or exc}") from exc
        await asyncio.sleep(0)
        url = f"{self.base_url}/{quote(key)}" if self.base_url else target.as_uri()
        LOGGER.info("File uploaded successfully: %s", url)
        return url


class SupabaseObjectStorage:
    """Uploads through the Supabase Storage REST API into a public bucket."""

    def __init__(
        self,
        url: str,
        api_key: str,
        bucket: str,
        *,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket
        self.timeout = timeout
        self._transport = transport

    def public_url(self, key: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(key)}"

    async def put(self, data: bytes, key: str, *, content_type: Optional[str] = None) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "apikey": self.api_key,
            "Content-Type": content_type or "application/octet-stream",
            "x-upsert": "false",
        }
        endpoint = f"{self.url}/storage/v1/object/{self.bucket}/{quote(key)}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(endpoint, content=data, headers=headers)
        except httpx.HTTPError as exc:
            raise UploadError(f"Failed to upload file: {exc}") from exc

        if response.is_error:
            raise UploadError(f"Failed to upload file: {_provider_message(response)}")

        url = self.public_url(key)
        LOGGER.info("File uploaded successfully: %s", url)
        return url


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for field_name in ("message", "error", "msg"):
            if body.get(field_name):
                return str(body[field_name])
    return f"HTTP {response.status_code}"


def build_storage(config: Settings | None = None) -> ObjectStorage:
    """Create the storage adapter selected by ``config.storage_backend``."""

    config = config or default_settings
    if config.storage_backend == "supabase":
        if not config.supabase_url or not config.supabase_key:
            raise ValueError("SECTIONDOCS_SUPABASE_URL and SECTIONDOCS_SUPABASE_KEY are required")
        return SupabaseObjectStorage(
            config.supabase_url,
            config.supabase_key,
            config.storage_bucket,
            timeout=config.upload_timeout,
        )
    return LocalObjectStorage(config.storage_dir, config.storage_base_url)


__all__ = [
    "ObjectStorage",
    "LocalObjectStorage",
    "SupabaseObjectStorage",
    "build_object_key",
    "build_storage",
]
