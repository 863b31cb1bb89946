from __future__ import annotations

import mimetypes
import re
from pathlib import Path
from typing import Any

from .errors import ValidationFailure
from .sessions import _now_ms

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
DEFAULT_MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def safe_filename(name: str) -> str:
    base = Path(name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base.replace(" ", "_")).lstrip(".")
    return cleaned or "upload"


class UploadStore:
    """Stores uploaded blobs on disk and hands back a public URL."""

    def __init__(self, directory: str | Path, *, url_prefix: str = "/uploads", max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def store(self, data: bytes, filename: str, content_type: str | None = None) -> dict[str, Any]:
        if not data:
            raise ValidationFailure("No file")
        if len(data) > self.max_bytes:
            raise ValidationFailure("File too large.")
        stamp = _now_ms()
        clean = safe_filename(filename)
        path = self.directory / f"{stamp}-{clean}"
        counter = 1
        while path.exists():
            path = self.directory / f"{stamp}-{counter}-{clean}"
            counter += 1
        path.write_bytes(data)
        mime_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return {
            "url": f"{self.url_prefix}/{path.name}",
            "mimeType": mime_type,
            "originalName": filename,
        }
