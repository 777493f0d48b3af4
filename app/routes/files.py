import mimetypes
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Milestone, ProjectFile, Task, User
from ..services.files import remove_file, store_upload
from ..services.permissions import get_project_or_404
from ..services.serializers import serialize_file
from ..services.sharepoint import GraphError
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import InvalidStoragePath


router = APIRouter(prefix="/files", tags=["files"])
uploads_router = APIRouter(tags=["files"])


def parse_uuid(value: Optional[str], field: str) -> Optional[uuid.UUID]:
    if value is None or not str(value).strip():
        return None
    try:
        return uuid.UUID(str(value).strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}")


@router.post("", status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    project_id: str = Form(...),
    milestone_id: Optional[str] = Form(None),
    task_id: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = get_project_or_404(db, parse_uuid(project_id, "project_id"), user)
    milestone_uuid = parse_uuid(milestone_id, "milestone_id")
    task_uuid = parse_uuid(task_id, "task_id")
    if milestone_uuid is not None:
        m = db.query(Milestone).filter(Milestone.id == milestone_uuid, Milestone.project_id == project.id).first()
        if m is None:
            raise HTTPException(status_code=404, detail="Milestone not found")
    if task_uuid is not None:
        t = db.query(Task).filter(Task.id == task_uuid).first()
        if t is None or t.milestone.project_id != project.id:
            raise HTTPException(status_code=404, detail="Task not found")
        milestone_uuid = milestone_uuid or t.milestone_id

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")
    try:
        record = store_upload(
            db,
            project=project,
            original_name=file.filename or "file",
            content=content,
            content_type=file.content_type,
            uploader=user,
            milestone_id=milestone_uuid,
            task_id=task_uuid,
        )
    except GraphError as e:
        raise HTTPException(status_code=500, detail=f"Failed to upload file to SharePoint ({e.status_code})")
    return {"file": serialize_file(record)}


@router.get("")
def list_files(
    project_id: uuid.UUID,
    milestone_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = get_project_or_404(db, project_id, user)
    q = db.query(ProjectFile).filter(ProjectFile.project_id == project.id)
    if milestone_id is not None:
        q = q.filter(ProjectFile.milestone_id == milestone_id)
    return {"files": [serialize_file(f) for f in q.order_by(ProjectFile.uploaded_at.desc()).all()]}


@router.delete("/{file_id}")
def delete_file(file_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    record = db.query(ProjectFile).filter(ProjectFile.id == file_id).first()
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    get_project_or_404(db, record.project_id, user)
    remove_file(db, record, user)
    return {"success": True}


@uploads_router.get("/uploads/{file_path:path}")
def serve_upload(file_path: str):
    """Serve files from local storage."""
    storage = LocalStorageProvider()
    try:
        path = storage.resolve(file_path)
    except InvalidStoragePath:
        raise HTTPException(status_code=400, detail="Invalid path")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    content_type = mimetypes.guess_type(str(path))[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=content_type, filename=path.name)
