from dataclasses import dataclass
from typing import Optional


class InvalidStoragePath(ValueError):
    pass


@dataclass
class StoredFile:
    key: str
    url: Optional[str] = None
    remote_id: Optional[str] = None
    remote_url: Optional[str] = None


class StorageProvider:
    name = "base"

    def save(self, key: str, content: bytes, content_type: str) -> StoredFile:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
