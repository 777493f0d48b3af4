"""
Project-scoped access checks.

Admins see every project; other users only the projects they own. Anything outside the caller's
scope is reported as missing (404), never as forbidden.
"""
import uuid
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Query, Session

from ..models.models import Milestone, Project, Task, User


def scope_projects(query: Query, user: User) -> Query:
    """Restrict a Project query to what the user may see."""
    if user.is_admin:
        return query
    return query.filter(Project.user_id == user.id)


def can_access_project(user: User, project: Optional[Project]) -> bool:
    return project is not None and (user.is_admin or project.user_id == user.id)


def get_project_or_404(db: Session, project_id: uuid.UUID, user: User) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not can_access_project(user, project):
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def get_milestone_or_404(db: Session, milestone_id: uuid.UUID, user: User) -> Milestone:
    milestone = db.query(Milestone).filter(Milestone.id == milestone_id).first()
    if milestone is None or not can_access_project(user, milestone.project):
        raise HTTPException(status_code=404, detail="Milestone not found")
    return milestone


def get_task_or_404(db: Session, task_id: uuid.UUID, user: User) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    # assignees reach their tasks even on projects they do not own
    if task.assigned_to_id != user.id and not can_access_project(user, task.milestone.project):
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def ensure_user_exists(db: Session, user_id: Optional[uuid.UUID], status_code: int = 400) -> None:
    if user_id is None:
        return
    if db.query(User.id).filter(User.id == user_id).first() is None:
        raise HTTPException(status_code=status_code, detail="Assigned user not found")
