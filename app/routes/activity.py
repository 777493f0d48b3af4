import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin
from ..db import get_db
from ..models.models import Project, User
from ..services.activity import build_activity
from ..services.permissions import scope_projects


router = APIRouter(tags=["activity"])


@router.get("/admin/activity")
def admin_activity(
    user_id: Optional[uuid.UUID] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return {"activities": build_activity(db, limit=limit, user_id=user_id)}


@router.get("/activity")
def my_activity(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Recent activity on the projects the caller can see."""
    project_ids = None
    if not user.is_admin:
        project_ids = [pid for (pid,) in scope_projects(db.query(Project.id), user)]
    return {"activities": build_activity(db, limit=limit, project_ids=project_ids)}
