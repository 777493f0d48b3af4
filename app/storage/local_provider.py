"""
Local filesystem storage provider.
Files live under UPLOAD_DIR and are served back by GET /uploads/{path}.
"""
from pathlib import Path
from typing import Optional
from urllib.parse import quote

import structlog

from ..config import settings
from .provider import InvalidStoragePath, StorageProvider, StoredFile


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.upload_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path:
        """Map a key to a path inside the upload root; anything escaping the root is rejected."""
        clean_key = key.replace("\\", "/").lstrip("/")
        path = (self.base_dir / clean_key).resolve()
        if path != self.base_dir and self.base_dir not in path.parents:
            raise InvalidStoragePath(key)
        return path

    def save(self, key: str, content: bytes, content_type: str) -> StoredFile:
        path = self.resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return StoredFile(key=key, url=f"/uploads/{quote(key.lstrip('/'))}")

    def exists(self, key: str) -> bool:
        try:
            return self.resolve(key).is_file()
        except InvalidStoragePath:
            return False

    def delete(self, key: str) -> None:
        path = self.resolve(key)
        try:
            if path.is_file():
                path.unlink()
        except OSError as e:
            structlog.get_logger().warning("local_file_delete_failed", key=key, error=str(e))
