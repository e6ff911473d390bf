"""Blob storage used by document tools."""

from __future__ import annotations

import asyncio
import mimetypes
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class UploadedFile:
    url: str
    pathname: str
    content_type: str
    size: int


class BlobStorage(ABC):
    """Storage contract for generated documents and user uploads."""

    @abstractmethod
    async def upload_file(self, content: bytes, name: str, content_type: str = "") -> UploadedFile:
        """Store ``content`` under a unique path derived from ``name``."""

    @abstractmethod
    async def read_file(self, pathname: str) -> bytes:
        """Read a previously uploaded file."""


class LocalBlobStorage(BlobStorage):
    """Local-disk blob backend for local-first deployment."""

    def __init__(self, root_dir: Path, base_url: str = "/blobs") -> None:
        self.root_dir = Path(root_dir).resolve()
        self.base_url = base_url.rstrip("/")

    async def upload_file(self, content: bytes, name: str, content_type: str = "") -> UploadedFile:
        safe_name = _SAFE_NAME_RE.sub("-", Path(name or "file").name).strip("-") or "file"
        pathname = f"{uuid.uuid4().hex[:12]}/{safe_name}"
        target = self._resolve(pathname)
        resolved_type = content_type or mimetypes.guess_type(safe_name)[0] or "application/octet-stream"

        def _write() -> UploadedFile:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            return UploadedFile(
                url=f"{self.base_url}/{pathname}",
                pathname=pathname,
                content_type=resolved_type,
                size=len(content),
            )

        return await asyncio.to_thread(_write)

    async def read_file(self, pathname: str) -> bytes:
        target = self._resolve(pathname)

        def _read() -> bytes:
            if not target.is_file():
                raise FileNotFoundError(pathname)
            return target.read_bytes()

        return await asyncio.to_thread(_read)

    def _resolve(self, pathname: str) -> Path:
        target = (self.root_dir / pathname).resolve()
        if self.root_dir not in target.parents:
            raise ValueError(f"Path escapes blob root: {pathname}")
        return target
