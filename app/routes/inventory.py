import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import (
    InventoryAssignment,
    InventoryItem,
    InventoryUnit,
    JobType,
    Milestone,
    User,
)
from ..schemas.inventory import (
    AssignmentCreate,
    AssignmentStatus,
    AssignmentUpdate,
    ItemCreate,
    ItemUpdate,
    UnitCreate,
    UnitUpdate,
)
from ..services import inventory as inventory_service
from ..services.inventory_csv import CsvImportError, export_csv, import_csv, template_csv
from ..services.labels import qr_data_url, unit_url
from ..services.permissions import get_project_or_404
from ..services.serializers import serialize_assignment, serialize_item, serialize_unit
from .job_types import job_type_rows


router = APIRouter(prefix="/inventory", tags=["inventory"])


def _item_or_404(db: Session, item_id: uuid.UUID) -> InventoryItem:
    item = db.query(InventoryItem).filter(InventoryItem.id == item_id).first()
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


def _ensure_job_type(db: Session, job_type_id: Optional[uuid.UUID]) -> None:
    if job_type_id is not None and db.query(JobType.id).filter(JobType.id == job_type_id).first() is None:
        raise HTTPException(status_code=404, detail="Job type not found")


def _csv_response(content: str, file_name: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


# ---------- ITEMS ----------
@router.get("")
def list_items(
    low_stock_only: bool = False,
    category: Optional[str] = None,
    job_type_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(InventoryItem).options(selectinload(InventoryItem.units), selectinload(InventoryItem.job_type))
    if category:
        q = q.filter(InventoryItem.category == category)
    if job_type_id is not None:
        q = q.filter(InventoryItem.job_type_id == job_type_id)
    items = q.order_by(InventoryItem.name.asc()).all()
    assigned = inventory_service.assigned_quantities(db, [i.id for i in items])
    rows = [serialize_item(i, assigned.get(i.id, 0)) for i in items]
    if low_stock_only:
        rows = [r for r in rows if r["is_low_stock"]]
        rows.sort(key=lambda r: r["available"])
    return {"items": rows}


@router.post("", status_code=201)
def create_item(payload: ItemCreate, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    _ensure_job_type(db, payload.job_type_id)
    item = InventoryItem(**payload.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return {"item": serialize_item(item, 0, detail=True)}


@router.get("/low-stock")
def low_stock(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    items = db.query(InventoryItem).options(selectinload(InventoryItem.units)).all()
    assigned = inventory_service.assigned_quantities(db, [i.id for i in items])
    rows = [serialize_item(i, assigned.get(i.id, 0)) for i in items]
    rows = sorted((r for r in rows if r["is_low_stock"]), key=lambda r: r["available"])
    return {"items": rows, "count": len(rows)}


@router.get("/export")
def export_items(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    file_name = f"inventory-export-{datetime.utcnow().strftime('%Y-%m-%d')}.csv"
    return _csv_response(export_csv(db), file_name)


@router.get("/template")
def import_template(_: User = Depends(get_current_user)):
    return _csv_response(template_csv(), "inventory-import-template.csv")


@router.post("/import")
async def import_items(
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
    try:
        return import_csv(db, text)
    except CsvImportError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/job-types")
def inventory_job_types(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return {"job_types": job_type_rows(db)}


# ---------- UNITS ----------
@router.get("/units")
def list_units(
    inventory_item_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    if inventory_item_id is None:
        raise HTTPException(status_code=400, detail="inventory_item_id is required")
    inventory_service.heal_orphaned_units(db, inventory_item_id)
    q = db.query(InventoryUnit).filter(InventoryUnit.inventory_item_id == inventory_item_id)
    if status:
        q = q.filter(InventoryUnit.status == status)
    units = q.order_by(InventoryUnit.status.asc(), InventoryUnit.created_at.asc()).all()
    active = {
        a.inventory_unit_id: a
        for a in db.query(InventoryAssignment).filter(
            InventoryAssignment.inventory_item_id == inventory_item_id,
            InventoryAssignment.inventory_unit_id.isnot(None),
            InventoryAssignment.status.in_(inventory_service.ACTIVE_STATUSES),
        )
    }
    rows = []
    for u in units:
        data = serialize_unit(u)
        assignment = active.get(u.id)
        data["assignment"] = serialize_assignment(assignment) if assignment else None
        rows.append(data)
    return {"units": rows}


@router.post("/units", status_code=201)
def create_unit(payload: UnitCreate, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    with inventory_service.allocation(db):
        item = inventory_service.lock_item(db, payload.inventory_item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        if payload.asset_tag and db.query(InventoryUnit.id).filter(InventoryUnit.asset_tag == payload.asset_tag).first():
            raise HTTPException(status_code=400, detail="Asset tag already exists")
        if payload.serial_number and db.query(InventoryUnit.id).filter(
            InventoryUnit.inventory_item_id == item.id, InventoryUnit.serial_number == payload.serial_number
        ).first():
            raise HTTPException(status_code=400, detail="Serial number already exists for this item")
        unit = InventoryUnit(
            inventory_item_id=item.id,
            serial_number=payload.serial_number,
            asset_tag=payload.asset_tag,
            notes=payload.notes,
            status="AVAILABLE",
        )
        db.add(unit)
        item.quantity = (item.quantity or 0) + 1
    db.refresh(unit)
    return {"unit": serialize_unit(unit)}


@router.get("/units/{unit_id}")
def get_unit(unit_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    unit = db.query(InventoryUnit).filter(InventoryUnit.id == unit_id).first()
    if unit is None:
        raise HTTPException(status_code=404, detail="Unit not found")
    data = serialize_unit(unit)
    data["item"] = {"id": str(unit.item.id), "name": unit.item.name, "sku": unit.item.sku}
    data["assignments"] = [serialize_assignment(a) for a in unit.assignments]
    return {"unit": data}


@router.put("/units/{unit_id}")
def update_unit(
    unit_id: uuid.UUID,
    payload: UnitUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    unit = db.query(InventoryUnit).filter(InventoryUnit.id == unit_id).first()
    if unit is None:
        raise HTTPException(status_code=404, detail="Unit not found")
    data = payload.model_dump(exclude_unset=True)
    serial = data.get("serial_number")
    if serial and serial != unit.serial_number and db.query(InventoryUnit.id).filter(
        InventoryUnit.inventory_item_id == unit.inventory_item_id,
        InventoryUnit.serial_number == serial,
        InventoryUnit.id != unit.id,
    ).first():
        raise HTTPException(status_code=400, detail="Serial number already exists for this item")
    tag = data.get("asset_tag")
    if tag and db.query(InventoryUnit.id).filter(InventoryUnit.asset_tag == tag, InventoryUnit.id != unit.id).first():
        raise HTTPException(status_code=400, detail="Asset tag already exists")
    if "status" in data:
        status = data.pop("status")
        if status is not None:
            unit.status = status.value
    for k, v in data.items():
        setattr(unit, k, v)
    db.commit()
    db.refresh(unit)
    return {"unit": serialize_unit(unit)}


@router.delete("/units/{unit_id}")
def delete_unit(unit_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    unit = db.query(InventoryUnit).filter(InventoryUnit.id == unit_id).first()
    if unit is None:
        raise HTTPException(status_code=404, detail="Unit not found")
    held = db.query(InventoryAssignment.id).filter(
        InventoryAssignment.inventory_unit_id == unit.id,
        InventoryAssignment.status.in_(inventory_service.ACTIVE_STATUSES),
    ).first()
    if unit.status == "ASSIGNED" or held is not None:
        raise HTTPException(status_code=400, detail="Cannot delete unit that is assigned to a project. Return it first.")
    item_id = unit.inventory_item_id
    with inventory_service.allocation(db):
        item = inventory_service.lock_item(db, item_id)
        db.delete(unit)
        db.flush()
        item.quantity = db.query(func.count(InventoryUnit.id)).filter(InventoryUnit.inventory_item_id == item_id).scalar() or 0
    return {"success": True}


@router.get("/units/{unit_id}/qr")
def unit_qr(unit_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    unit = db.query(InventoryUnit).filter(InventoryUnit.id == unit_id).first()
    if unit is None:
        raise HTTPException(status_code=404, detail="Unit not found")
    url = unit_url(unit.id)
    data = serialize_unit(unit)
    data["item"] = {"id": str(unit.item.id), "name": unit.item.name, "sku": unit.item.sku}
    return {"qr_code": qr_data_url(url), "url": url, "unit": data}


# ---------- ASSIGNMENTS ----------
@router.get("/assignments")
def list_assignments(
    milestone_id: Optional[uuid.UUID] = None,
    inventory_item_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[AssignmentStatus] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(InventoryAssignment)
    if milestone_id is not None:
        q = q.filter(InventoryAssignment.milestone_id == milestone_id)
    if inventory_item_id is not None:
        q = q.filter(InventoryAssignment.inventory_item_id == inventory_item_id)
    if project_id is not None:
        q = q.filter(InventoryAssignment.project_id == project_id)
    if status is not None:
        q = q.filter(InventoryAssignment.status == status.value)
    rows = q.order_by(InventoryAssignment.assigned_at.desc()).all()
    return {"assignments": [serialize_assignment(a) for a in rows]}


@router.post("/assignments", status_code=201)
def create_assignment(payload: AssignmentCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    if payload.milestone_id is None and payload.project_id is None:
        raise HTTPException(status_code=400, detail="milestone_id or project_id is required")
    if payload.milestone_id is not None:
        milestone = db.query(Milestone).filter(Milestone.id == payload.milestone_id).first()
        if milestone is None:
            raise HTTPException(status_code=404, detail="Milestone not found")
        get_project_or_404(db, milestone.project_id, user)
    else:
        get_project_or_404(db, payload.project_id, user)
    try:
        with inventory_service.allocation(db):
            assignment = inventory_service.create_assignment(
                db,
                item_id=payload.inventory_item_id,
                unit_id=payload.inventory_unit_id,
                milestone_id=payload.milestone_id,
                project_id=payload.project_id,
                quantity=payload.quantity,
                notes=payload.notes,
                actor_id=user.id,
            )
    except inventory_service.InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    db.refresh(assignment)
    return {"assignment": serialize_assignment(assignment)}


@router.put("/assignments/{assignment_id}")
def update_assignment(
    assignment_id: uuid.UUID,
    payload: AssignmentUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    assignment = db.query(InventoryAssignment).filter(InventoryAssignment.id == assignment_id).first()
    if assignment is None:
        raise HTTPException(status_code=404, detail="Assignment not found")
    try:
        with inventory_service.allocation(db):
            inventory_service.update_assignment(
                db,
                assignment,
                status=payload.status.value if payload.status else None,
                quantity=payload.quantity,
                notes=payload.notes,
                fields_set=payload.model_fields_set,
            )
    except inventory_service.InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    db.refresh(assignment)
    return {"assignment": serialize_assignment(assignment)}


@router.delete("/assignments/{assignment_id}")
def delete_assignment(assignment_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    assignment = db.query(InventoryAssignment).filter(InventoryAssignment.id == assignment_id).first()
    if assignment is None:
        raise HTTPException(status_code=404, detail="Assignment not found")
    with inventory_service.allocation(db):
        inventory_service.release_assignment(db, assignment)
    return {"success": True}


# ---------- ITEM DETAIL ----------
@router.get("/{item_id}")
def get_item(item_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    item = _item_or_404(db, item_id)
    return {"item": serialize_item(item, inventory_service.assigned_quantity(db, item.id), detail=True)}


@router.put("/{item_id}")
def update_item(
    item_id: uuid.UUID,
    payload: ItemUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    _item_or_404(db, item_id)
    data = payload.model_dump(exclude_unset=True)
    for required in ("name", "quantity", "threshold"):
        if required in data and data[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} is required")
    if "unit" in data and not data["unit"]:
        data["unit"] = "each"
    if "job_type_id" in data:
        _ensure_job_type(db, data["job_type_id"])
    with inventory_service.allocation(db):
        item = inventory_service.lock_item(db, item_id)
        if "quantity" in data:
            assigned = inventory_service.assigned_quantity(db, item.id)
            if data["quantity"] < assigned:
                raise HTTPException(
                    status_code=400,
                    detail=f"Quantity cannot be less than the assigned quantity ({assigned})",
                )
        for k, v in data.items():
            setattr(item, k, v)
    db.refresh(item)
    return {"item": serialize_item(item, inventory_service.assigned_quantity(db, item.id), detail=True)}


@router.delete("/{item_id}")
def delete_item(item_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    item = _item_or_404(db, item_id)
    active = db.query(func.count(InventoryAssignment.id)).filter(
        InventoryAssignment.inventory_item_id == item.id,
        InventoryAssignment.status.in_(inventory_service.ACTIVE_STATUSES),
    ).scalar()
    if active:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete item with active assignments. Please return or remove assignments first.",
        )
    db.delete(item)
    db.commit()
    return {"success": True}
