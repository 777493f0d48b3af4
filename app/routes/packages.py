import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import InventoryItem, InventoryPackage, InventoryPackageItem, JobType, User
from ..schemas.inventory import PackageApply, PackageCreate, PackageItemIn, PackageUpdate
from ..services import inventory as inventory_service
from ..services.permissions import get_milestone_or_404
from ..services.serializers import serialize_assignment, serialize_package


router = APIRouter(prefix="/inventory/packages", tags=["inventory"])


def _package_or_404(db: Session, package_id: uuid.UUID) -> InventoryPackage:
    package = db.query(InventoryPackage).filter(InventoryPackage.id == package_id).first()
    if package is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return package


def _ensure_job_type(db: Session, job_type_id: uuid.UUID) -> None:
    if db.query(JobType.id).filter(JobType.id == job_type_id).first() is None:
        raise HTTPException(status_code=404, detail="Job type not found")


def _package_lines(db: Session, items: List[PackageItemIn]) -> List[InventoryPackageItem]:
    ids = {line.inventory_item_id for line in items}
    found = {row for (row,) in db.query(InventoryItem.id).filter(InventoryItem.id.in_(ids))} if ids else set()
    missing = ids - found
    if missing:
        raise HTTPException(status_code=404, detail=f"Inventory item not found: {sorted(str(m) for m in missing)[0]}")
    return [InventoryPackageItem(inventory_item_id=line.inventory_item_id, quantity=line.quantity) for line in items]


def _clear_other_defaults(db: Session, package: InventoryPackage) -> None:
    db.query(InventoryPackage).filter(
        InventoryPackage.job_type_id == package.job_type_id,
        InventoryPackage.id != package.id,
        InventoryPackage.is_default.is_(True),
    ).update({InventoryPackage.is_default: False}, synchronize_session=False)


@router.get("")
def list_packages(
    job_type_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(InventoryPackage)
    if job_type_id is not None:
        q = q.filter(InventoryPackage.job_type_id == job_type_id)
    packages = q.order_by(InventoryPackage.is_default.desc(), InventoryPackage.name.asc()).all()
    return {"packages": [serialize_package(p) for p in packages]}


@router.post("", status_code=201)
def create_package(payload: PackageCreate, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    _ensure_job_type(db, payload.job_type_id)
    package = InventoryPackage(
        name=payload.name,
        description=payload.description,
        job_type_id=payload.job_type_id,
        is_default=payload.is_default,
    )
    package.items = _package_lines(db, payload.items)
    db.add(package)
    db.flush()
    if package.is_default:
        _clear_other_defaults(db, package)
    db.commit()
    db.refresh(package)
    return {"package": serialize_package(package)}


@router.get("/{package_id}")
def get_package(package_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return {"package": serialize_package(_package_or_404(db, package_id))}


@router.put("/{package_id}")
def update_package(
    package_id: uuid.UUID,
    payload: PackageUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    package = _package_or_404(db, package_id)
    data = payload.model_dump(exclude_unset=True, exclude={"items"})
    for required in ("name", "job_type_id"):
        if required in data and data[required] is None:
            raise HTTPException(status_code=400, detail=f"{required} is required")
    if "job_type_id" in data:
        _ensure_job_type(db, data["job_type_id"])
    if "is_default" in data and data["is_default"] is None:
        data["is_default"] = False
    for k, v in data.items():
        setattr(package, k, v)
    if payload.items is not None:
        lines = _package_lines(db, payload.items)
        package.items.clear()
        db.flush()
        package.items.extend(lines)
    db.flush()
    if package.is_default:
        _clear_other_defaults(db, package)
    db.commit()
    db.refresh(package)
    return {"package": serialize_package(package)}


@router.delete("/{package_id}")
def delete_package(package_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    package = _package_or_404(db, package_id)
    db.delete(package)
    db.commit()
    return {"success": True}


@router.post("/{package_id}/apply")
def apply_package(
    package_id: uuid.UUID,
    payload: PackageApply,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    package = _package_or_404(db, package_id)
    milestone = get_milestone_or_404(db, payload.milestone_id, user)
    try:
        with inventory_service.allocation(db):
            assignments, _ = inventory_service.apply_package(db, package, milestone, actor_id=user.id)
    except inventory_service.InventoryError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    for a in assignments:
        db.refresh(a)
    return {
        "success": True,
        "assignments": [serialize_assignment(a) for a in assignments],
        "message": f"Applied package {package.name}: {len(assignments)} assignment(s) created",
    }
