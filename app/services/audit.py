"""
Status-change audit service.
Append-only StatusChange rows written in the same transaction as the status update.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.models import Milestone, Project, StatusChange


def create_status_change(
    db: Session,
    *,
    entity_type: str,
    new_status: str,
    old_status: Optional[str] = None,
    project_id: Optional[uuid.UUID] = None,
    milestone_id: Optional[uuid.UUID] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> StatusChange:
    """
    Stage a StatusChange row. The caller commits, so the audit row and the
    status update land together or not at all.

    Args:
        entity_type: PROJECT|MILESTONE
        new_status / old_status: value after / before the update
        actor_id: user who made the change
    """
    change = StatusChange(
        entity_type=entity_type,
        project_id=project_id,
        milestone_id=milestone_id,
        old_status=old_status,
        new_status=new_status,
        user_id=actor_id,
    )
    db.add(change)
    db.flush()
    return change


def change_project_status(db: Session, project: Project, new_status: str, actor_id: Optional[uuid.UUID]) -> bool:
    """Returns True when the status actually changed (and an audit row was staged)."""
    old_status = project.status
    if old_status == new_status:
        return False
    project.status = new_status
    create_status_change(
        db,
        entity_type="PROJECT",
        project_id=project.id,
        old_status=old_status,
        new_status=new_status,
        actor_id=actor_id,
    )
    return True


def change_milestone_status(db: Session, milestone: Milestone, new_status: str, actor_id: Optional[uuid.UUID]) -> bool:
    old_status = milestone.status
    if old_status == new_status:
        return False
    milestone.status = new_status
    # completed_date tracks the COMPLETED state only
    milestone.completed_date = datetime.utcnow() if new_status == "COMPLETED" else None
    create_status_change(
        db,
        entity_type="MILESTONE",
        project_id=milestone.project_id,
        milestone_id=milestone.id,
        old_status=old_status,
        new_status=new_status,
        actor_id=actor_id,
    )
    return True
