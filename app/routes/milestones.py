import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Milestone, MilestoneComment, User
from ..schemas.projects import CommentCreate, MilestoneCreate, MilestoneUpdate
from ..services.audit import change_milestone_status
from ..services.inventory import release_units
from ..services.permissions import ensure_user_exists, get_milestone_or_404, get_project_or_404
from ..services.serializers import serialize_comment, serialize_milestone


router = APIRouter(prefix="/milestones", tags=["milestones"])


@router.post("", status_code=201)
def create_milestone(payload: MilestoneCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_project_or_404(db, payload.project_id, user)
    ensure_user_exists(db, payload.assigned_to_id)
    order = payload.order
    if order is None:
        order = db.query(func.count(Milestone.id)).filter(Milestone.project_id == project.id).scalar() or 0
    milestone = Milestone(
        project_id=project.id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        status=payload.status.value,
        is_important=payload.is_important,
        due_date=payload.due_date,
        assigned_to_id=payload.assigned_to_id,
        order=order,
    )
    if payload.status.value == "COMPLETED":
        milestone.completed_date = datetime.utcnow()
    db.add(milestone)
    db.commit()
    db.refresh(milestone)
    return {"milestone": serialize_milestone(milestone)}


@router.get("/{milestone_id}")
def get_milestone(milestone_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    milestone = get_milestone_or_404(db, milestone_id, user)
    data = serialize_milestone(milestone)
    data["comments"] = [serialize_comment(c) for c in milestone.comments]
    return {"milestone": data}


@router.patch("/{milestone_id}")
def update_milestone(
    milestone_id: uuid.UUID,
    payload: MilestoneUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    milestone = get_milestone_or_404(db, milestone_id, user)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] is None:
        raise HTTPException(status_code=400, detail="name is required")
    if data.get("assigned_to_id") is not None:
        ensure_user_exists(db, data["assigned_to_id"])
    new_status = data.pop("status", None)
    for k, v in data.items():
        setattr(milestone, k, v)
    if new_status is not None:
        change_milestone_status(db, milestone, new_status.value, user.id)
    db.commit()
    db.refresh(milestone)
    return {"milestone": serialize_milestone(milestone)}


@router.delete("/{milestone_id}")
def delete_milestone(milestone_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    milestone = get_milestone_or_404(db, milestone_id, user)
    release_units(milestone.assignments)
    db.delete(milestone)
    db.commit()
    return {"success": True}


# ---------- COMMENTS ----------
@router.get("/{milestone_id}/comments")
def list_comments(milestone_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    milestone = get_milestone_or_404(db, milestone_id, user)
    return {"comments": [serialize_comment(c) for c in milestone.comments]}


@router.post("/{milestone_id}/comments", status_code=201)
def add_comment(
    milestone_id: uuid.UUID,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    milestone = get_milestone_or_404(db, milestone_id, user)
    comment = MilestoneComment(milestone_id=milestone.id, user_id=user.id, content=payload.content)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return {"comment": serialize_comment(comment)}


@router.delete("/{milestone_id}/comments/{comment_id}")
def delete_comment(
    milestone_id: uuid.UUID,
    comment_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    milestone = get_milestone_or_404(db, milestone_id, user)
    comment = (
        db.query(MilestoneComment)
        .filter(MilestoneComment.id == comment_id, MilestoneComment.milestone_id == milestone.id)
        .first()
    )
    if comment is None:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.user_id != user.id and milestone.project.user_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    db.delete(comment)
    db.commit()
    return {"success": True}
