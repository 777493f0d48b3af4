import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import ProjectFile, Task, TaskComment, User
from ..schemas.projects import CommentCreate, TaskCreate, TaskStatus, TaskUpdate
from ..services.files import remove_file, store_upload
from ..services.permissions import ensure_user_exists, get_milestone_or_404, get_task_or_404
from ..services.serializers import serialize_comment, serialize_file, serialize_task
from ..services.sharepoint import GraphError


router = APIRouter(prefix="/tasks", tags=["tasks"])


def _with_project(task: Task) -> dict:
    data = serialize_task(task)
    milestone = task.milestone
    data["milestone"] = {"id": str(milestone.id), "name": milestone.name}
    data["project"] = {"id": str(milestone.project.id), "name": milestone.project.name}
    return data


@router.get("/my-tasks")
def my_tasks(status: Optional[TaskStatus] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    q = db.query(Task).filter(Task.assigned_to_id == user.id)
    if status is not None:
        q = q.filter(Task.status == status.value)
    tasks = q.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc()).all()
    return {"tasks": [_with_project(t) for t in tasks]}


@router.post("", status_code=201)
def create_task(payload: TaskCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    milestone = get_milestone_or_404(db, payload.milestone_id, user)
    ensure_user_exists(db, payload.assigned_to_id, status_code=404)
    order = payload.order if payload.order is not None else len(milestone.tasks)
    task = Task(
        milestone_id=milestone.id,
        name=payload.name,
        description=payload.description,
        status=payload.status.value,
        is_important=payload.is_important,
        due_date=payload.due_date,
        assigned_to_id=payload.assigned_to_id,
        order=order,
        completed_date=datetime.utcnow() if payload.status == TaskStatus.COMPLETED else None,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return {"task": serialize_task(task)}


@router.get("/{task_id}")
def get_task(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task = get_task_or_404(db, task_id, user)
    data = serialize_task(task, with_comments=True)
    data["milestone"] = {"id": str(task.milestone.id), "name": task.milestone.name}
    data["project"] = {"id": str(task.milestone.project.id), "name": task.milestone.project.name}
    return {"task": data}


@router.patch("/{task_id}")
def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task = get_task_or_404(db, task_id, user)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is None:
        raise HTTPException(status_code=400, detail="name is required")
    if data.get("assigned_to_id") is not None:
        ensure_user_exists(db, data["assigned_to_id"], status_code=404)
    new_status = data.pop("status", None)
    for k, v in data.items():
        setattr(task, k, v)
    if new_status is not None and new_status.value != task.status:
        task.status = new_status.value
        task.completed_date = datetime.utcnow() if new_status == TaskStatus.COMPLETED else None
    db.commit()
    db.refresh(task)
    return {"task": serialize_task(task)}


@router.delete("/{task_id}")
def delete_task(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task = get_task_or_404(db, task_id, user)
    db.delete(task)
    db.commit()
    return {"success": True}


# ---------- COMMENTS ----------
@router.get("/{task_id}/comments")
def list_comments(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task = get_task_or_404(db, task_id, user)
    return {"comments": [serialize_comment(c) for c in task.comments]}


@router.post("/{task_id}/comments", status_code=201)
def add_comment(
    task_id: uuid.UUID,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task = get_task_or_404(db, task_id, user)
    comment = TaskComment(task_id=task.id, user_id=user.id, content=payload.content)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return {"comment": serialize_comment(comment)}


@router.delete("/{task_id}/comments/{comment_id}")
def delete_comment(
    task_id: uuid.UUID,
    comment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task = get_task_or_404(db, task_id, user)
    comment = db.query(TaskComment).filter(TaskComment.id == comment_id, TaskComment.task_id == task.id).first()
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.user_id != user.id and task.milestone.project.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    db.delete(comment)
    db.commit()
    return {"success": True}


# ---------- FILES ----------
@router.get("/{task_id}/files")
def list_task_files(task_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task = get_task_or_404(db, task_id, user)
    return {"files": [serialize_file(f) for f in task.files]}


@router.post("/{task_id}/files", status_code=201)
async def upload_task_file(
    task_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task = get_task_or_404(db, task_id, user)
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="File is empty")
    try:
        record = store_upload(
            db,
            project=task.milestone.project,
            original_name=file.filename or "file",
            content=content,
            content_type=file.content_type,
            uploader=user,
            milestone_id=task.milestone_id,
            task_id=task.id,
        )
    except GraphError as e:
        raise HTTPException(status_code=500, detail=f"Failed to upload file to SharePoint ({e.status_code})")
    return {"file": serialize_file(record)}


@router.delete("/{task_id}/files/{file_id}")
def delete_task_file(
    task_id: uuid.UUID,
    file_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task = get_task_or_404(db, task_id, user)
    record = db.query(ProjectFile).filter(ProjectFile.id == file_id, ProjectFile.task_id == task.id).first()
    if record is None:
        raise HTTPException(status_code=404, detail="File not found")
    remove_file(db, record, user)
    return {"success": True}
