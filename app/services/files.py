"""
Project file attachments: storage provider selection and ProjectFile bookkeeping.
"""
import os
import uuid
from datetime import datetime
from typing import Optional

import structlog
from slugify import slugify
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Project, ProjectFile, User
from ..services.microsoft_auth import ensure_access_token
from ..services.sharepoint import GraphError
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider
from ..storage.sharepoint_provider import SharePointStorageProvider


log = structlog.get_logger()


def get_storage(db: Session, user: Optional[User] = None) -> StorageProvider:
    """SharePoint when configured and the user holds a Graph token, local filesystem otherwise."""
    if settings.storage_provider == "sharepoint" and user is not None:
        token = ensure_access_token(db, user)
        if token:
            return SharePointStorageProvider(token)
    return LocalStorageProvider()


def get_storage_for_file(f: ProjectFile, user: Optional[User] = None) -> Optional[StorageProvider]:
    if f.provider == "sharepoint":
        if user is not None and user.access_token:
            return SharePointStorageProvider(user.access_token)
        return None
    return LocalStorageProvider()


def stored_name(original_name: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.utcnow()).strftime("%Y%m%d%H%M%S%f")
    base, ext = os.path.splitext(original_name)
    return f"{stamp}-{slugify(base) or 'file'}{ext.lower()}"


def store_upload(
    db: Session,
    *,
    project: Project,
    original_name: str,
    content: bytes,
    content_type: Optional[str],
    uploader: User,
    milestone_id: Optional[uuid.UUID] = None,
    task_id: Optional[uuid.UUID] = None,
) -> ProjectFile:
    storage = get_storage(db, uploader)
    file_name = stored_name(original_name)
    if storage.name == "sharepoint":
        key = f"{project.name}/{file_name}"
    else:
        key = f"{project.id}/{file_name}"
    stored = storage.save(key, content, content_type or "application/octet-stream")
    record = ProjectFile(
        project_id=project.id,
        milestone_id=milestone_id,
        task_id=task_id,
        name=original_name,
        file_name=file_name,
        file_url=stored.url,
        file_type=content_type,
        file_size=len(content),
        provider=storage.name,
        storage_key=stored.key,
        sharepoint_id=stored.remote_id,
        sharepoint_url=stored.remote_url,
        uploaded_by_id=uploader.id,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    log.info("file_uploaded", file_id=str(record.id), project_id=str(project.id), provider=storage.name)
    return record


def remove_file(db: Session, record: ProjectFile, user: Optional[User] = None) -> None:
    """Delete the stored object (best effort) and the record."""
    storage = get_storage_for_file(record, user)
    if storage is not None and record.storage_key:
        try:
            storage.delete(record.storage_key)
        except (GraphError, OSError) as e:
            log.warning("stored_file_delete_failed", file_id=str(record.id), error=str(e))
    db.delete(record)
    db.commit()
