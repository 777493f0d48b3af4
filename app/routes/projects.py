import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, selectinload

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import (
    Communication,
    InventoryPackage,
    JobType,
    Milestone,
    MilestoneComment,
    Project,
    User,
)
from ..schemas.common import iso
from ..schemas.projects import ProjectCreate, ProjectUpdate
from ..services import inventory as inventory_service
from ..services.audit import change_project_status
from ..services.permissions import get_project_or_404, scope_projects
from ..services.serializers import serialize_communication, serialize_project, user_brief
from ..services.templates import find_template, instantiate_template


router = APIRouter(prefix="/projects", tags=["projects"])

INVENTORY_MILESTONE = "Inventory"


def _ensure_job_type(db: Session, job_type_id: Optional[uuid.UUID]) -> None:
    if job_type_id is not None and db.query(JobType.id).filter(JobType.id == job_type_id).first() is None:
        raise HTTPException(status_code=404, detail="Job type not found")


def _inventory_milestone(db: Session, project: Project) -> Milestone:
    for m in project.milestones:
        if "inventory" in m.name.lower():
            return m
    milestone = Milestone(
        project_id=project.id,
        name=INVENTORY_MILESTONE,
        description="Project inventory and equipment",
        status="PENDING",
        order=len(project.milestones),
    )
    db.add(milestone)
    db.flush()
    return milestone


@router.get("")
def list_projects(status: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    q = scope_projects(db.query(Project), user).options(
        selectinload(Project.milestones).selectinload(Milestone.tasks),
        selectinload(Project.owner),
        selectinload(Project.job_type),
    )
    if status:
        q = q.filter(Project.status == status)
    projects = q.order_by(Project.updated_at.desc()).all()
    return {"projects": [serialize_project(p) for p in projects]}


@router.post("", status_code=201)
def create_project(payload: ProjectCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    _ensure_job_type(db, payload.job_type_id)
    template = find_template(db, payload.template_id)
    if payload.template_id is not None and template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    package = None
    if payload.package_id is not None:
        package = db.query(InventoryPackage).filter(InventoryPackage.id == payload.package_id).first()
        if package is None:
            raise HTTPException(status_code=404, detail="Package not found")

    data = payload.model_dump(exclude={"template_id", "package_id", "status"})
    status = payload.status.value if payload.status else "INITIAL_CONTACT"
    warnings = []
    try:
        with inventory_service.allocation(db):
            project = Project(**data, status=status, user_id=user.id)
            db.add(project)
            db.flush()
            if template is not None:
                instantiate_template(db, template, project)
                db.refresh(project)
            if package is not None:
                milestone = _inventory_milestone(db, project)
                _, warnings = inventory_service.apply_package(
                    db, package, milestone, actor_id=user.id, skip_insufficient=True
                )
    except inventory_service.InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    for w in warnings:
        structlog.get_logger().warning("package_line_skipped", project_id=str(project.id), warning=w)
    db.refresh(project)
    return {"project": serialize_project(project, detail=True), "warnings": warnings}


@router.get("/{project_id}")
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_project_or_404(db, project_id, user)
    return {"project": serialize_project(project, detail=True)}


@router.patch("/{project_id}")
def update_project(
    project_id: uuid.UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = get_project_or_404(db, project_id, user)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is None:
        raise HTTPException(status_code=400, detail="name is required")
    if "job_type_id" in data:
        _ensure_job_type(db, data["job_type_id"])
    new_status = data.pop("status", None)
    for k, v in data.items():
        setattr(project, k, v)
    if new_status is not None:
        change_project_status(db, project, new_status.value, user.id)
    db.commit()
    db.refresh(project)
    return {"project": serialize_project(project, detail=True)}


@router.delete("/{project_id}")
def delete_project(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_project_or_404(db, project_id, user)
    inventory_service.release_units(project.assignments)
    db.delete(project)
    db.commit()
    return {"success": True}


@router.get("/{project_id}/communications")
def project_communications(project_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Communications plus milestone comments, newest first."""
    project = get_project_or_404(db, project_id, user)
    entries = [
        serialize_communication(c)
        for c in db.query(Communication).filter(Communication.project_id == project.id)
    ]
    comments = (
        db.query(MilestoneComment)
        .join(Milestone, MilestoneComment.milestone_id == Milestone.id)
        .filter(Milestone.project_id == project.id)
        .all()
    )
    for c in comments:
        entries.append({
            "id": str(c.id),
            "project_id": str(project.id),
            "milestone_id": str(c.milestone_id),
            "milestone": {"id": str(c.milestone.id), "name": c.milestone.name},
            "type": "NOTE",
            "subject": f"Comment on {c.milestone.name}",
            "content": c.content,
            "direction": None,
            "user": user_brief(c.user),
            "source": "milestone_comment",
            "created_at": iso(c.created_at),
        })
    entries.sort(key=lambda e: e["created_at"] or "", reverse=True)
    return {"communications": entries}
