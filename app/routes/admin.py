import secrets
import uuid
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, File, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import require_admin
from ..config import settings
from ..db import engine, get_db
from ..models.models import (
    BackupSchedule,
    CalendarEvent,
    Communication,
    InventoryAssignment,
    LabelSettings,
    Milestone,
    MilestoneComment,
    Project,
    ProjectFile,
    StatusChange,
    Task,
    TaskComment,
    User,
)
from ..schemas.admin import BackupRequest, BackupScheduleRequest, LabelSettingsUpdate, RoleUpdate
from ..schemas.common import iso
from ..services import inventory as inventory_service
from ..services.backup import BackupError, build_backup, restore_backup, select_backup_admin
from ..services.microsoft_auth import ensure_access_token
from ..services.scheduler import calculate_next_run, latest_schedule
from ..services.sharepoint import GraphClient, GraphError


router = APIRouter(prefix="/admin", tags=["admin"])
log = structlog.get_logger()


def _graph_failure(e: GraphError, message: str) -> HTTPException:
    status_code = e.status_code if 400 <= e.status_code < 500 else 502
    return HTTPException(status_code=status_code, detail={"error": message, "details": e.body})


def _graph_client(db: Session, user: User) -> GraphClient:
    token = ensure_access_token(db, user)
    if not token:
        raise HTTPException(status_code=400, detail="Microsoft account not connected")
    return GraphClient(token)


# ---------- users ----------

def _serialize_user(u: User, project_count: int = 0, task_count: int = 0) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "role": u.role,
        "image": u.image,
        "provider": u.provider,
        "created_at": iso(u.created_at),
        "project_count": project_count,
        "task_count": task_count,
    }


@router.get("/users")
def list_users(db: Session = Depends(get_db), _: User = Depends(require_admin)):
    project_counts = dict(db.query(Project.user_id, func.count(Project.id)).group_by(Project.user_id).all())
    task_counts = dict(
        db.query(Task.assigned_to_id, func.count(Task.id))
        .filter(Task.assigned_to_id.isnot(None))
        .group_by(Task.assigned_to_id)
        .all()
    )
    users = db.query(User).order_by(User.created_at.desc()).all()
    return {
        "users": [_serialize_user(u, project_counts.get(u.id, 0), task_counts.get(u.id, 0)) for u in users]
    }


@router.patch("/users/{user_id}")
def update_user_role(
    user_id: uuid.UUID,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    new_role = payload.role.value
    if target.id == admin.id and new_role != "admin":
        raise HTTPException(status_code=400, detail="Cannot remove your own admin role")
    if target.is_admin and new_role != "admin":
        admins = db.query(func.count(User.id)).filter(User.role == "admin").scalar() or 0
        if admins <= 1:
            raise HTTPException(status_code=400, detail="Cannot remove the last admin")
    target.role = new_role
    db.commit()
    db.refresh(target)
    log.info("user_role_changed", user_id=str(target.id), role=new_role, by=str(admin.id))
    return {"user": _serialize_user(target)}


@router.delete("/users/{user_id}")
def delete_user(user_id: uuid.UUID, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    if target.id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")

    # owned projects go with the user; units they held are freed first
    with inventory_service.allocation(db):
        for project in list(target.projects):
            inventory_service.release_units(project.assignments)
            db.delete(project)
        db.flush()
        for model in (MilestoneComment, TaskComment, Communication, CalendarEvent):
            db.query(model).filter(model.user_id == target.id).delete(synchronize_session=False)
        for column in (
            Milestone.assigned_to_id,
            Task.assigned_to_id,
            StatusChange.user_id,
            ProjectFile.uploaded_by_id,
            InventoryAssignment.assigned_by_id,
        ):
            db.query(column.class_).filter(column == target.id).update({column: None}, synchronize_session=False)
        db.delete(target)
    log.info("user_deleted", user_id=str(user_id), by=str(admin.id))
    return {"success": True}


# ---------- label settings ----------

def _label_settings(db: Session) -> LabelSettings:
    row = db.query(LabelSettings).first()
    if row is None:
        row = LabelSettings()
        db.add(row)
        db.commit()
        db.refresh(row)
    return row


def _serialize_labels(row: LabelSettings) -> dict:
    return {
        "id": str(row.id),
        "label_width": row.label_width,
        "label_height": row.label_height,
        "qr_code_size": row.qr_code_size,
        "font_size": row.font_size,
        "show_item_name": row.show_item_name,
        "show_asset_tag": row.show_asset_tag,
        "show_serial_number": row.show_serial_number,
        "show_qr_code": row.show_qr_code,
        "label_template": row.label_template,
        "updated_at": iso(row.updated_at),
    }


@router.get("/label-settings")
def get_label_settings(db: Session = Depends(get_db), _: User = Depends(require_admin)):
    return {"settings": _serialize_labels(_label_settings(db))}


@router.put("/label-settings")
def update_label_settings(
    payload: LabelSettingsUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    row = _label_settings(db)
    for k, v in payload.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(row, k, v)
    db.commit()
    db.refresh(row)
    return {"settings": _serialize_labels(row)}


# ---------- backups ----------

@router.post("/backup")
def create_backup(
    payload: Optional[BackupRequest] = Body(None),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    try:
        file_name, content = build_backup("manual")
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    headers = {
        "Content-Disposition": f'attachment; filename="{file_name}"',
        "X-Backup-Filename": file_name,
    }
    if payload is not None and payload.upload_to_sharepoint:
        token = ensure_access_token(db, admin)
        if not token:
            log.warning("backup_sharepoint_skipped", reason="no_token", user_id=str(admin.id))
        else:
            try:
                uploaded = GraphClient(token).upload_backup(content, file_name)
                if uploaded.get("web_url"):
                    headers["X-SharePoint-Url"] = uploaded["web_url"]
            except GraphError as e:
                log.error("backup_sharepoint_upload_failed", file_name=file_name, error=str(e))
    return Response(content=content, media_type="application/zip", headers=headers)


def _restore(content: bytes) -> dict:
    try:
        result = restore_backup(content)
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    # pooled connections still point at the replaced file
    engine.dispose()
    return result


@router.post("/restore")
async def restore_from_upload(file: UploadFile = File(...), _: User = Depends(require_admin)):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file provided")
    return _restore(content)


@router.post("/scheduled-backup")
def scheduled_backup(authorization: Optional[str] = Header(None), db: Session = Depends(get_db)):
    """Called by the backup scheduler with the shared secret instead of a session."""
    expected = settings.admin_backup_secret
    if not expected or not authorization or not secrets.compare_digest(authorization, f"Bearer {expected}"):
        raise HTTPException(status_code=401, detail="Unauthorized")
    admin = select_backup_admin(db)
    if admin is None:
        raise HTTPException(status_code=400, detail="No admin user with Microsoft credentials found")
    token = ensure_access_token(db, admin)
    if not token:
        raise HTTPException(status_code=400, detail="Admin Microsoft token unavailable")
    try:
        file_name, content = build_backup("scheduled")
    except BackupError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    try:
        uploaded = GraphClient(token).upload_backup(content, file_name)
    except GraphError as e:
        log.error("scheduled_backup_upload_failed", file_name=file_name, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to upload backup to SharePoint")
    return {
        "success": True,
        "message": "Scheduled backup uploaded to SharePoint",
        "file_name": file_name,
        "sharepoint_url": uploaded.get("web_url"),
        "size": len(content),
    }


@router.get("/sharepoint-backups")
def list_sharepoint_backups(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    client = _graph_client(db, admin)
    prefix = settings.backup_file_prefix
    try:
        backups = client.list_backups((f"{prefix}-backup-", f"{prefix}-scheduled-backup-"))
    except GraphError as e:
        raise _graph_failure(e, "Failed to list SharePoint backups")
    return {"backups": backups}


@router.post("/sharepoint-backups/{item_id}/restore")
def restore_from_sharepoint(item_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    client = _graph_client(db, admin)
    try:
        content = client.download(item_id)
    except GraphError as e:
        raise _graph_failure(e, "Failed to download backup from SharePoint")
    return _restore(content)


# ---------- backup schedule ----------

def _serialize_schedule(s: Optional[BackupSchedule]) -> Optional[dict]:
    if s is None:
        return None
    return {
        "id": str(s.id),
        "enabled": s.enabled,
        "frequency": s.frequency,
        "start_time": iso(s.start_time),
        "last_run": iso(s.last_run),
        "next_run": iso(s.next_run),
        "created_at": iso(s.created_at),
        "updated_at": iso(s.updated_at),
    }


@router.get("/backup-schedule")
def get_backup_schedule(request: Request, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    scheduler = request.app.state.backup_scheduler
    return {"schedule": _serialize_schedule(latest_schedule(db)), "is_running": scheduler.is_running}


@router.post("/backup-schedule")
def save_backup_schedule(
    payload: BackupScheduleRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    frequency = payload.frequency.value
    now = datetime.utcnow()
    next_run = None
    if payload.enabled:
        if payload.start_time is not None and payload.start_time > now:
            next_run = payload.start_time
        else:
            next_run = calculate_next_run(frequency, now)

    schedule = latest_schedule(db)
    if schedule is None:
        schedule = BackupSchedule()
        db.add(schedule)
    schedule.enabled = payload.enabled
    schedule.frequency = frequency
    schedule.start_time = payload.start_time
    schedule.next_run = next_run
    db.commit()
    db.refresh(schedule)

    scheduler = request.app.state.backup_scheduler
    if payload.enabled:
        scheduler.start(frequency)
    else:
        scheduler.stop()
    return {"schedule": _serialize_schedule(schedule)}


@router.delete("/backup-schedule")
def delete_backup_schedule(request: Request, db: Session = Depends(get_db), _: User = Depends(require_admin)):
    db.query(BackupSchedule).delete(synchronize_session=False)
    db.commit()
    request.app.state.backup_scheduler.stop()
    return {"success": True}
