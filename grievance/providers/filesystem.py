"""Content reader for references that resolve to local files."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from ..interfaces import ContentReader


def path_from_uri(uri: str) -> Optional[Path]:
    """Return the local path for ``file://`` URIs and absolute paths, else None."""
    if uri.startswith("file://"):
        return Path(unquote(urlparse(uri).path))
    if uri.startswith("/"):
        return Path(uri)
    return None


class FileSystemContentReader(ContentReader):
    async def read(self, uri: str) -> bytes:
        path = path_from_uri(uri)
        if path is None:
            raise LookupError(f"{uri} is not a local file reference")
        return await asyncio.to_thread(path.read_bytes)
