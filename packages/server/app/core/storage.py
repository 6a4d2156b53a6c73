"""
Object storage for uploaded files (organization logos).

Files live under <storage_dir>/<bucket>/<path> and are served back from
<storage_public_url>/<bucket>/<path>. Uploads overwrite (upsert).
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path, PurePosixPath

import structlog

from app.core.config import get_settings

log = structlog.get_logger()

_unsafe_chars = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(Exception):
    """Raised when an object cannot be written."""


@dataclass
class FileUpload:
    """An uploaded file held in memory."""

    filename: str
    content_type: str
    data: bytes


def sanitize_filename(filename: str) -> str:
    """Strip directories and collapse anything outside [A-Za-z0-9._-] to '-'."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    name = _unsafe_chars.sub("-", name).strip(".-")
    return name or "file"


def logo_object_path(org_slug: str, filename: str) -> str:
    """<slug>/<unix-ms>-<sanitized filename>"""
    return f"{org_slug}/{int(time.time() * 1000)}-{sanitize_filename(filename)}"


class LocalObjectStore:
    """Filesystem-backed object store."""

    def __init__(self, root: str | Path, public_url: str):
        self._root = Path(root).resolve()
        self._public_url = public_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self._root / bucket / path).resolve()
        if self._root not in target.parents:
            raise StorageError(f"Refusing to write outside storage root: {bucket}/{path}")
        return target

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self._public_url}/{bucket}/{path}"

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        """Write the object and return its public URL."""
        target = self._resolve(bucket, path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

        log.info(
            "storage.uploaded",
            bucket=bucket,
            path=path,
            size=len(data),
            content_type=content_type,
        )
        return self.public_url(bucket, path)


@lru_cache
def get_object_store() -> LocalObjectStore:
    """FastAPI dependency: the configured object store."""
    settings = get_settings()
    return LocalObjectStore(settings.storage_dir, settings.storage_public_url)
