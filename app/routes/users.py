from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional
import uuid

import structlog

from ..db import get_db
from ..models.models import User
from ..auth.security import get_current_user
from ..services.microsoft_auth import ensure_access_token
from ..services.sharepoint import GraphClient, GraphError


router = APIRouter(prefix="/users", tags=["users"])


def _user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "email": u.email,
        "image": u.image,
    }


@router.get("")
def list_users(
    q: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """
    List users for assignee pickers

    Args:
        q: Search query (name or email)
        page: Page number (1-indexed)
        limit: Number of items per page (default 50, max 200)
    """
    limit = min(max(1, limit), 200)
    page = max(1, page)
    offset = (page - 1) * limit

    query = db.query(User)
    if q:
        like = f"%{q}%"
        query = query.filter(or_(User.name.ilike(like), User.email.ilike(like)))
    total = query.count()
    rows = query.order_by(User.name.asc(), User.email.asc()).offset(offset).limit(limit).all()
    return {
        "users": [_user_to_dict(u) for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/{user_id}/profile-picture")
def profile_picture(user_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")
    if target.id != me.id and not target.microsoft_id:
        raise HTTPException(status_code=404, detail="No profile picture")
    token = ensure_access_token(db, me)
    if not token:
        raise HTTPException(status_code=404, detail="No profile picture")
    try:
        photo = GraphClient(token).get_photo(None if target.id == me.id else target.microsoft_id)
    except GraphError as e:
        structlog.get_logger().warning("profile_picture_failed", user_id=str(target.id), status=e.status_code)
        raise HTTPException(status_code=404, detail="No profile picture")
    if not photo:
        raise HTTPException(status_code=404, detail="No profile picture")
    return Response(content=photo, media_type="image/jpeg", headers={"Cache-Control": "private, max-age=3600"})
