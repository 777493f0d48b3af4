import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import InventoryItem, JobType, Project, User
from ..schemas.inventory import JobTypeCreate, JobTypeResponse, JobTypeUpdate


router = APIRouter(prefix="/job-types", tags=["job-types"])


def job_type_rows(db: Session) -> List[Dict[str, Any]]:
    item_counts = dict(
        db.query(InventoryItem.job_type_id, func.count(InventoryItem.id)).group_by(InventoryItem.job_type_id).all()
    )
    project_counts = dict(
        db.query(Project.job_type_id, func.count(Project.id)).group_by(Project.job_type_id).all()
    )
    rows = []
    for jt in db.query(JobType).order_by(JobType.order.asc(), JobType.name.asc()).all():
        data = JobTypeResponse.model_validate(jt).model_dump(mode="json")
        data["item_count"] = item_counts.get(jt.id, 0)
        data["project_count"] = project_counts.get(jt.id, 0)
        rows.append(data)
    return rows


def _name_taken(db: Session, name: str, exclude_id=None) -> bool:
    q = db.query(JobType.id).filter(func.lower(JobType.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(JobType.id != exclude_id)
    return q.first() is not None


@router.get("")
def list_job_types(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return {"job_types": job_type_rows(db)}


@router.post("", status_code=201)
def create_job_type(payload: JobTypeCreate, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    if _name_taken(db, payload.name):
        raise HTTPException(status_code=400, detail="Job type with this name already exists")
    jt = JobType(**payload.model_dump())
    db.add(jt)
    db.commit()
    db.refresh(jt)
    return {"job_type": JobTypeResponse.model_validate(jt).model_dump(mode="json")}


@router.get("/{job_type_id}")
def get_job_type(job_type_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    jt = db.query(JobType).filter(JobType.id == job_type_id).first()
    if jt is None:
        raise HTTPException(status_code=404, detail="Job type not found")
    return {"job_type": JobTypeResponse.model_validate(jt).model_dump(mode="json")}


@router.put("/{job_type_id}")
def update_job_type(
    job_type_id: uuid.UUID,
    payload: JobTypeUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    jt = db.query(JobType).filter(JobType.id == job_type_id).first()
    if jt is None:
        raise HTTPException(status_code=404, detail="Job type not found")
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        if data["name"] is None:
            raise HTTPException(status_code=400, detail="name is required")
        if _name_taken(db, data["name"], exclude_id=jt.id):
            raise HTTPException(status_code=400, detail="Job type with this name already exists")
    if "order" in data and data["order"] is None:
        data["order"] = 0
    for k, v in data.items():
        setattr(jt, k, v)
    db.commit()
    db.refresh(jt)
    return {"job_type": JobTypeResponse.model_validate(jt).model_dump(mode="json")}


@router.delete("/{job_type_id}")
def delete_job_type(job_type_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    jt = db.query(JobType).filter(JobType.id == job_type_id).first()
    if jt is None:
        raise HTTPException(status_code=404, detail="Job type not found")
    items = db.query(func.count(InventoryItem.id)).filter(InventoryItem.job_type_id == jt.id).scalar() or 0
    projects = db.query(func.count(Project.id)).filter(Project.job_type_id == jt.id).scalar() or 0
    if items or projects:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete job type in use by {items} item(s) and {projects} project(s)",
        )
    db.delete(jt)
    db.commit()
    return {"success": True}
