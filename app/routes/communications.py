import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Communication, Milestone, User
from ..schemas.projects import CommunicationCreate
from ..services.permissions import get_project_or_404
from ..services.serializers import serialize_communication


router = APIRouter(prefix="/communications", tags=["communications"])


@router.get("")
def list_communications(
    project_id: Optional[uuid.UUID] = None,
    milestone_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if project_id is None:
        raise HTTPException(status_code=400, detail="project_id is required")
    project = get_project_or_404(db, project_id, user)
    q = db.query(Communication).filter(Communication.project_id == project.id)
    if milestone_id is not None:
        q = q.filter(Communication.milestone_id == milestone_id)
    rows = q.order_by(Communication.created_at.desc()).all()
    return {"communications": [serialize_communication(c) for c in rows]}


@router.post("", status_code=201)
def create_communication(
    payload: CommunicationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = get_project_or_404(db, payload.project_id, user)
    if payload.milestone_id is not None:
        milestone = (
            db.query(Milestone)
            .filter(Milestone.id == payload.milestone_id, Milestone.project_id == project.id)
            .first()
        )
        if milestone is None:
            raise HTTPException(status_code=404, detail="Milestone not found")
    row = Communication(
        project_id=project.id,
        milestone_id=payload.milestone_id,
        user_id=user.id,
        type=payload.type.value,
        subject=payload.subject,
        content=payload.content,
        direction=payload.direction.value if payload.direction else None,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return {"communication": serialize_communication(row)}


@router.delete("/{communication_id}")
def delete_communication(
    communication_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    row = db.query(Communication).filter(Communication.id == communication_id).first()
    if row is None:
        raise HTTPException(status_code=404, detail="Communication not found")
    if row.user_id != user.id and row.project.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=404, detail="Communication not found")
    db.delete(row)
    db.commit()
    return {"success": True}
