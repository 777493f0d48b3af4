"""
Activity feed: recent communications, status changes and milestone comments merged newest first.
"""
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Query, Session

from ..models.models import Communication, Milestone, MilestoneComment, StatusChange
from ..schemas.common import iso
from .serializers import user_brief


def _ref(obj) -> Optional[Dict[str, str]]:
    return {"id": str(obj.id), "name": obj.name} if obj is not None else None


def _scoped(q: Query, user_column, project_column, user_id, project_ids) -> Query:
    if user_id is not None:
        q = q.filter(user_column == user_id)
    if project_ids is not None:
        q = q.filter(project_column.in_(project_ids))
    return q


def build_activity(
    db: Session,
    *,
    limit: int = 100,
    user_id: Optional[uuid.UUID] = None,
    project_ids: Optional[List[uuid.UUID]] = None,
) -> List[Dict[str, Any]]:
    """
    Args:
        user_id: only entries authored by this user
        project_ids: only entries on these projects (None = all projects)
    """
    if project_ids is not None and not project_ids:
        return []
    activities = []

    communications = _scoped(
        db.query(Communication), Communication.user_id, Communication.project_id, user_id, project_ids
    ).order_by(Communication.created_at.desc()).limit(limit)
    for c in communications:
        activities.append({
            "id": str(c.id),
            "type": "communication",
            "action": f"{c.type} - {c.direction or 'general'}",
            "description": c.subject or c.content[:100],
            "user": user_brief(c.user),
            "project": _ref(c.project),
            "milestone": _ref(c.milestone),
            "created_at": c.created_at,
        })

    changes = _scoped(
        db.query(StatusChange), StatusChange.user_id, StatusChange.project_id, user_id, project_ids
    ).order_by(StatusChange.created_at.desc()).limit(limit)
    for s in changes:
        activities.append({
            "id": str(s.id),
            "type": "status_change",
            "action": f"{s.entity_type} status changed",
            "description": f"{s.old_status or 'N/A'} → {s.new_status}",
            "user": user_brief(s.user),
            "project": _ref(s.project),
            "milestone": _ref(s.milestone),
            "created_at": s.created_at,
        })

    comments = _scoped(
        db.query(MilestoneComment).join(Milestone, MilestoneComment.milestone_id == Milestone.id),
        MilestoneComment.user_id,
        Milestone.project_id,
        user_id,
        project_ids,
    ).order_by(MilestoneComment.created_at.desc()).limit(limit)
    for c in comments:
        activities.append({
            "id": str(c.id),
            "type": "comment",
            "action": "Milestone comment",
            "description": c.content[:100],
            "user": user_brief(c.user),
            "project": _ref(c.milestone.project),
            "milestone": _ref(c.milestone),
            "created_at": c.created_at,
        })

    activities.sort(key=lambda a: a["created_at"], reverse=True)
    for a in activities:
        a["created_at"] = iso(a["created_at"])
    return activities[:limit]
