from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath

from sharespace.backend.auth import Actor
from sharespace.core.config import Settings
from sharespace.core.errors import AuthenticationError, NotFoundError, ValidationFailed


log = logging.getLogger(__name__)


class StorageService:
    """Public-read buckets on the local filesystem."""

    def __init__(self, settings: Settings):
        self._root = Path(settings.STORAGE_ROOT)
        self._public_url = settings.STORAGE_PUBLIC_URL.rstrip("/")
        self._max_bytes = int(settings.MAX_UPLOAD_BYTES)

    def _resolve(self, bucket: str, path: str) -> Path:
        parts = PurePosixPath(path).parts
        if not bucket or "/" in bucket or bucket in (".", "..") or not parts:
            raise ValidationFailed("Invalid storage path")
        if any(p in ("..", "/") for p in parts):
            raise ValidationFailed("Invalid storage path")
        return self._root.joinpath(bucket, *parts)

    async def upload(self, actor: Actor, bucket: str, path: str, data: bytes, content_type: str | None = None) -> str:
        if not actor.authenticated:
            raise AuthenticationError("Sign in required to upload files")
        if len(data) > self._max_bytes:
            raise ValidationFailed(f"File exceeds {self._max_bytes} bytes", status_code=413)
        target = self._resolve(bucket, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        log.info("[storage] stored %s/%s (%s bytes, %s)", bucket, path, len(data), content_type or "unknown")
        return path

    def public_url(self, bucket: str, path: str) -> str:
        self._resolve(bucket, path)
        return f"{self._public_url}/{bucket}/{path}"

    def open_path(self, bucket: str, path: str) -> Path:
        target = self._resolve(bucket, path)
        if not target.is_file():
            raise NotFoundError("File not found")
        return target
