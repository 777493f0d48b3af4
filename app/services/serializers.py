"""
Response shapes shared across routers.
"""
from typing import Any, Dict, Optional

from ..models.models import (
    CalendarEvent,
    Communication,
    InventoryAssignment,
    InventoryItem,
    InventoryPackage,
    InventoryUnit,
    Milestone,
    MilestoneComment,
    Project,
    ProjectFile,
    StatusChange,
    Task,
    TaskComment,
    User,
)
from ..schemas.common import iso
from .inventory import stock_levels


def _id(v) -> Optional[str]:
    return str(v) if v is not None else None


def user_brief(u: Optional[User]) -> Optional[Dict[str, Any]]:
    if u is None:
        return None
    return {"id": str(u.id), "name": u.name, "email": u.email, "image": u.image}


def serialize_comment(c) -> Dict[str, Any]:
    data = {
        "id": str(c.id),
        "content": c.content,
        "user": user_brief(c.user),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if isinstance(c, MilestoneComment):
        data["milestone_id"] = str(c.milestone_id)
    elif isinstance(c, TaskComment):
        data["task_id"] = str(c.task_id)
    return data


def serialize_file(f: ProjectFile) -> Dict[str, Any]:
    return {
        "id": str(f.id),
        "project_id": str(f.project_id),
        "milestone_id": _id(f.milestone_id),
        "task_id": _id(f.task_id),
        "name": f.name,
        "file_name": f.file_name,
        "file_url": f.file_url,
        "file_type": f.file_type,
        "file_size": f.file_size,
        "provider": f.provider,
        "sharepoint_url": f.sharepoint_url,
        "uploaded_by_id": _id(f.uploaded_by_id),
        "uploaded_at": iso(f.uploaded_at),
    }


def serialize_task(t: Task, with_comments: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(t.id),
        "milestone_id": str(t.milestone_id),
        "name": t.name,
        "description": t.description,
        "status": t.status,
        "is_important": bool(t.is_important),
        "due_date": iso(t.due_date),
        "completed_date": iso(t.completed_date),
        "assigned_to": user_brief(t.assigned_to),
        "order": t.order,
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }
    if with_comments:
        data["comments"] = [serialize_comment(c) for c in t.comments]
        data["files"] = [serialize_file(f) for f in t.files]
    return data


def serialize_milestone(m: Milestone, with_tasks: bool = True) -> Dict[str, Any]:
    data = {
        "id": str(m.id),
        "project_id": str(m.project_id),
        "name": m.name,
        "description": m.description,
        "category": m.category,
        "status": m.status,
        "is_important": bool(m.is_important),
        "due_date": iso(m.due_date),
        "completed_date": iso(m.completed_date),
        "assigned_to": user_brief(m.assigned_to),
        "order": m.order,
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }
    if with_tasks:
        data["tasks"] = [serialize_task(t) for t in m.tasks]
    return data


def serialize_status_change(s: StatusChange) -> Dict[str, Any]:
    return {
        "id": str(s.id),
        "entity_type": s.entity_type,
        "project_id": _id(s.project_id),
        "milestone_id": _id(s.milestone_id),
        "old_status": s.old_status,
        "new_status": s.new_status,
        "user": user_brief(s.user),
        "created_at": iso(s.created_at),
    }


PROJECT_FIELDS = (
    "name", "description", "status", "location", "address", "city", "state", "zip_code",
    "gc_contact_name", "gc_contact_email", "cds_contact_name", "cds_contact_email",
    "franchise_owner_contact_name", "franchise_owner_contact_email",
)


def serialize_project(p: Project, detail: bool = False) -> Dict[str, Any]:
    data = {"id": str(p.id)}
    data.update({field: getattr(p, field) for field in PROJECT_FIELDS})
    data.update({
        "job_type_id": _id(p.job_type_id),
        "job_type": {"id": str(p.job_type.id), "name": p.job_type.name, "color": p.job_type.color} if p.job_type else None,
        "user_id": str(p.user_id),
        "owner": user_brief(p.owner),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    })
    if detail:
        data["milestones"] = [serialize_milestone(m) for m in p.milestones]
        data["files"] = [serialize_file(f) for f in p.files]
        data["status_changes"] = [
            serialize_status_change(s) for s in sorted(p.status_changes, key=lambda s: s.created_at, reverse=True)
        ]
    else:
        data["milestone_count"] = len(p.milestones)
        data["task_count"] = sum(len(m.tasks) for m in p.milestones)
        data["completed_milestone_count"] = sum(1 for m in p.milestones if m.status == "COMPLETED")
    return data


def serialize_communication(c: Communication) -> Dict[str, Any]:
    return {
        "id": str(c.id),
        "project_id": str(c.project_id),
        "milestone_id": _id(c.milestone_id),
        "milestone": {"id": str(c.milestone.id), "name": c.milestone.name} if c.milestone else None,
        "type": c.type,
        "subject": c.subject,
        "content": c.content,
        "direction": c.direction,
        "user": user_brief(c.user),
        "source": "communication",
        "created_at": iso(c.created_at),
    }


def serialize_event(e: CalendarEvent) -> Dict[str, Any]:
    return {
        "id": str(e.id),
        "title": e.title,
        "description": e.description,
        "start_date": iso(e.start_date),
        "end_date": iso(e.end_date),
        "all_day": bool(e.all_day),
        "location": e.location,
        "project_id": _id(e.project_id),
        "project": {"id": str(e.project.id), "name": e.project.name} if e.project else None,
        "user_id": str(e.user_id),
        "created_at": iso(e.created_at),
    }


ITEM_FIELDS = (
    "name", "description", "sku", "part_number", "category", "track_serial_numbers", "quantity",
    "threshold", "unit", "location", "supplier", "distributor", "distributor_contact", "order_link",
    "order_phone", "order_email", "cost", "notes",
)


def serialize_unit(u: InventoryUnit) -> Dict[str, Any]:
    return {
        "id": str(u.id),
        "inventory_item_id": str(u.inventory_item_id),
        "serial_number": u.serial_number,
        "asset_tag": u.asset_tag,
        "status": u.status,
        "notes": u.notes,
        "created_at": iso(u.created_at),
        "updated_at": iso(u.updated_at),
    }


def serialize_assignment(a: InventoryAssignment) -> Dict[str, Any]:
    return {
        "id": str(a.id),
        "inventory_item_id": str(a.inventory_item_id),
        "inventory_unit_id": _id(a.inventory_unit_id),
        "project_id": _id(a.project_id),
        "milestone_id": _id(a.milestone_id),
        "quantity": a.quantity,
        "status": a.status,
        "notes": a.notes,
        "item": {"id": str(a.item.id), "name": a.item.name, "sku": a.item.sku, "unit": a.item.unit} if a.item else None,
        "unit": serialize_unit(a.unit) if a.unit else None,
        "project": {"id": str(a.project.id), "name": a.project.name} if a.project else None,
        "milestone": {"id": str(a.milestone.id), "name": a.milestone.name} if a.milestone else None,
        "assigned_by_id": _id(a.assigned_by_id),
        "assigned_at": iso(a.assigned_at),
        "used_at": iso(a.used_at),
        "returned_at": iso(a.returned_at),
    }


def serialize_item(item: InventoryItem, assigned: int, detail: bool = False) -> Dict[str, Any]:
    data = {"id": str(item.id)}
    data.update({field: getattr(item, field) for field in ITEM_FIELDS})
    data["job_type_id"] = _id(item.job_type_id)
    data["job_type"] = {"id": str(item.job_type.id), "name": item.job_type.name} if item.job_type else None
    data.update(stock_levels(item, assigned))
    data["unit_count"] = len(item.units)
    data["available_unit_count"] = sum(1 for u in item.units if u.status == "AVAILABLE")
    data["created_at"] = iso(item.created_at)
    data["updated_at"] = iso(item.updated_at)
    if detail:
        data["units"] = [serialize_unit(u) for u in item.units]
        data["assignments"] = [
            serialize_assignment(a) for a in item.assignments if a.status in ("ASSIGNED", "USED")
        ]
    return data


def serialize_package(p: InventoryPackage) -> Dict[str, Any]:
    return {
        "id": str(p.id),
        "name": p.name,
        "description": p.description,
        "job_type_id": str(p.job_type_id),
        "job_type": {"id": str(p.job_type.id), "name": p.job_type.name} if p.job_type else None,
        "is_default": bool(p.is_default),
        "items": [
            {
                "id": str(line.id),
                "inventory_item_id": str(line.inventory_item_id),
                "quantity": line.quantity,
                "item": {"id": str(line.item.id), "name": line.item.name, "unit": line.item.unit} if line.item else None,
            }
            for line in p.items
        ],
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }
