"""
Asset storage for generated media.

Image/video capabilities may return raw bytes. Bytes never go into the
execution record; they are written through an AssetStore and replaced by
the URL it returns.
"""

import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def detect_image_type(data: bytes) -> str:
    """MIME type from the file signature (providers don't always report it)"""
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    if data.startswith(b"GIF8"):
        return "image/gif"
    return "application/octet-stream"


class AssetStore(ABC):
    """Persists binary assets and returns a URL for them."""

    @abstractmethod
    def save(self, data: bytes, namespace: str, name: str, content_type: str) -> str:
        """
        Store data and return its URL.

        Args:
            data: Raw asset bytes
            namespace: Grouping prefix (e.g. execution id)
            name: File stem (e.g. node id + item index)
            content_type: MIME type of the data
        """
        pass


class LocalAssetStore(AssetStore):
    """
    Writes assets below base_dir.

    URLs are base_url + relative path when base_url is set (serving the
    directory is left to the deployment), otherwise file:// URIs.
    """

    def __init__(self, base_dir: str, base_url: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.base_url = base_url.rstrip("/") if base_url else None

    def save(self, data: bytes, namespace: str, name: str, content_type: str) -> str:
        extension = mimetypes.guess_extension(content_type) or ".bin"
        relative = Path(namespace) / f"{name}_{uuid.uuid4().hex[:8]}{extension}"
        path = self.base_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        logger.info(f"Stored asset {relative} ({len(data)} bytes)")

        if self.base_url:
            return f"{self.base_url}/{relative.as_posix()}"
        return path.resolve().as_uri()
