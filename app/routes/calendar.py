import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import CalendarEvent, User
from ..schemas.common import naive_utc
from ..schemas.projects import CalendarEventCreate, CalendarEventUpdate
from ..services.permissions import get_project_or_404
from ..services.serializers import serialize_event


router = APIRouter(prefix="/calendar", tags=["calendar"])


def _own_event(db: Session, event_id: uuid.UUID, user: User) -> CalendarEvent:
    event = db.query(CalendarEvent).filter(CalendarEvent.id == event_id, CalendarEvent.user_id == user.id).first()
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


@router.get("")
def list_events(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    project_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(CalendarEvent).filter(CalendarEvent.user_id == user.id)
    start, end = naive_utc(start), naive_utc(end)
    # overlap with [start, end]
    if end is not None:
        q = q.filter(CalendarEvent.start_date <= end)
    if start is not None:
        q = q.filter(func.coalesce(CalendarEvent.end_date, CalendarEvent.start_date) >= start)
    if project_id is not None:
        q = q.filter(CalendarEvent.project_id == project_id)
    return {"events": [serialize_event(e) for e in q.order_by(CalendarEvent.start_date.asc()).all()]}


@router.post("", status_code=201)
def create_event(payload: CalendarEventCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if payload.project_id is not None:
        get_project_or_404(db, payload.project_id, user)
    if payload.end_date is not None and payload.end_date < payload.start_date:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    event = CalendarEvent(**payload.model_dump(), user_id=user.id)
    db.add(event)
    db.commit()
    db.refresh(event)
    return {"event": serialize_event(event)}


@router.patch("/{event_id}")
def update_event(
    event_id: uuid.UUID,
    payload: CalendarEventUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    event = _own_event(db, event_id, user)
    data = payload.model_dump(exclude_unset=True)
    for required in ("title", "start_date"):
        if required in data and data[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} is required")
    if data.get("project_id") is not None:
        get_project_or_404(db, data["project_id"], user)
    for k, v in data.items():
        setattr(event, k, v)
    if event.end_date is not None and event.end_date < event.start_date:
        raise HTTPException(status_code=400, detail="End date must be after start date")
    db.commit()
    db.refresh(event)
    return {"event": serialize_event(event)}


@router.delete("/{event_id}")
def delete_event(event_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    event = _own_event(db, event_id, user)
    db.delete(event)
    db.commit()
    return {"success": True}
