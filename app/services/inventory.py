"""
Inventory availability and allocation.

available = quantity - sum(assignment.quantity for ASSIGNED/USED assignments)

Every path that creates an assignment or raises an assignment's quantity runs inside
`allocation(db)`: the item row is locked (SELECT ... FOR UPDATE where the backend supports it),
availability is recomputed and the insert is committed before the lock is released. The
process-level lock covers sqlite, which has no row locks.
"""
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import (
    InventoryAssignment,
    InventoryItem,
    InventoryPackage,
    InventoryUnit,
    Milestone,
)


log = structlog.get_logger()

ACTIVE_STATUSES = ("ASSIGNED", "USED")

_allocation_lock = threading.RLock()


class InventoryError(Exception):
    status_code = 400


class InventoryNotFound(InventoryError):
    status_code = 404


class InsufficientInventory(InventoryError):
    def __init__(self, available: int, requested: int, message: Optional[str] = None):
        self.available = available
        self.requested = requested
        super().__init__(message or f"Insufficient inventory. Available: {available}, Requested: {requested}")


@contextmanager
def allocation(db: Session):
    with _allocation_lock:
        try:
            yield
            db.commit()
        except Exception:
            db.rollback()
            raise


def lock_item(db: Session, item_id: uuid.UUID) -> Optional[InventoryItem]:
    return (
        db.query(InventoryItem)
        .filter(InventoryItem.id == item_id)
        .with_for_update()
        .populate_existing()
        .first()
    )


def assigned_quantity(db: Session, item_id: uuid.UUID, exclude_assignment_id: Optional[uuid.UUID] = None) -> int:
    q = db.query(func.coalesce(func.sum(InventoryAssignment.quantity), 0)).filter(
        InventoryAssignment.inventory_item_id == item_id,
        InventoryAssignment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_assignment_id is not None:
        q = q.filter(InventoryAssignment.id != exclude_assignment_id)
    return int(q.scalar() or 0)


def assigned_quantities(db: Session, item_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, int]:
    ids = list(item_ids)
    if not ids:
        return {}
    rows = (
        db.query(InventoryAssignment.inventory_item_id, func.sum(InventoryAssignment.quantity))
        .filter(
            InventoryAssignment.inventory_item_id.in_(ids),
            InventoryAssignment.status.in_(ACTIVE_STATUSES),
        )
        .group_by(InventoryAssignment.inventory_item_id)
        .all()
    )
    return {item_id: int(total or 0) for item_id, total in rows}


def stock_levels(item: InventoryItem, assigned: int) -> Dict[str, object]:
    available = (item.quantity or 0) - assigned
    return {
        "assigned": assigned,
        "available": available,
        "is_low_stock": available < (item.threshold or 0),
    }


def available_quantity(db: Session, item: InventoryItem) -> int:
    return (item.quantity or 0) - assigned_quantity(db, item.id)


def create_assignment(
    db: Session,
    *,
    item_id: uuid.UUID,
    unit_id: Optional[uuid.UUID] = None,
    milestone_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    quantity: int = 1,
    notes: Optional[str] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> InventoryAssignment:
    """Validate and insert one assignment. Call inside `allocation(db)`."""
    item = lock_item(db, item_id)
    if item is None:
        raise InventoryNotFound("Inventory item not found")

    if milestone_id is not None:
        milestone = db.query(Milestone).filter(Milestone.id == milestone_id).first()
        if milestone is None:
            raise InventoryNotFound("Milestone not found")
        project_id = milestone.project_id

    unit = None
    if unit_id is not None:
        unit = db.query(InventoryUnit).filter(InventoryUnit.id == unit_id).with_for_update().first()
        if unit is None:
            raise InventoryNotFound("Inventory unit not found")
        if unit.inventory_item_id != item.id:
            raise InventoryError("Unit does not belong to this inventory item")
        if unit.status != "AVAILABLE":
            raise InventoryError("Unit is not available for assignment")
        quantity = 1
    elif quantity is None or quantity <= 0:
        raise InventoryError("Quantity must be greater than 0")

    available = available_quantity(db, item)
    if available < quantity:
        raise InsufficientInventory(available, quantity)

    assignment = InventoryAssignment(
        inventory_item_id=item.id,
        inventory_unit_id=unit.id if unit else None,
        project_id=project_id,
        milestone_id=milestone_id,
        quantity=quantity,
        status="ASSIGNED",
        notes=notes,
        assigned_by_id=actor_id,
    )
    db.add(assignment)
    if unit is not None:
        unit.status = "ASSIGNED"
    db.flush()
    return assignment


def update_assignment(
    db: Session,
    assignment: InventoryAssignment,
    *,
    status: Optional[str] = None,
    quantity: Optional[int] = None,
    notes: Optional[str] = None,
    fields_set: Iterable[str] = (),
) -> InventoryAssignment:
    """Apply a partial update. Call inside `allocation(db)`."""
    fields_set = set(fields_set)
    item = lock_item(db, assignment.inventory_item_id)

    if "quantity" in fields_set and quantity is not None and quantity != assignment.quantity:
        if assignment.inventory_unit_id is not None:
            raise InventoryError("Quantity of a unit assignment is always 1")
        if quantity <= 0:
            raise InventoryError("Quantity must be greater than 0")
        if quantity > assignment.quantity and assignment.status in ACTIVE_STATUSES:
            available = (item.quantity or 0) - assigned_quantity(db, item.id, exclude_assignment_id=assignment.id)
            if available < quantity:
                raise InsufficientInventory(available, quantity)
        assignment.quantity = quantity

    if "status" in fields_set and status is not None and status != assignment.status:
        if status in ACTIVE_STATUSES and assignment.status not in ACTIVE_STATUSES:
            # reactivating a returned assignment takes its unit and stock again
            if assignment.inventory_unit_id is not None:
                unit = (
                    db.query(InventoryUnit)
                    .filter(InventoryUnit.id == assignment.inventory_unit_id)
                    .with_for_update()
                    .populate_existing()
                    .first()
                )
                if unit is None or unit.status != "AVAILABLE":
                    raise InventoryError("Unit is not available for assignment")
            available = (item.quantity or 0) - assigned_quantity(db, item.id, exclude_assignment_id=assignment.id)
            if available < assignment.quantity:
                raise InsufficientInventory(available, assignment.quantity)
        assignment.status = status
        now = datetime.utcnow()
        if status == "USED":
            assignment.used_at = now
        elif status == "RETURNED":
            assignment.returned_at = now
        if assignment.unit is not None:
            assignment.unit.status = {"ASSIGNED": "ASSIGNED", "USED": "USED", "RETURNED": "AVAILABLE"}[status]

    if "notes" in fields_set:
        assignment.notes = notes
    db.flush()
    return assignment


def release_assignment(db: Session, assignment: InventoryAssignment) -> None:
    """Delete an assignment, returning its unit to AVAILABLE."""
    if assignment.unit is not None:
        assignment.unit.status = "AVAILABLE"
    db.delete(assignment)
    db.flush()


def heal_orphaned_units(db: Session, item_id: uuid.UUID) -> int:
    """Reset ASSIGNED units that no active assignment points at."""
    active_unit_ids = {
        unit_id
        for (unit_id,) in db.query(InventoryAssignment.inventory_unit_id).filter(
            InventoryAssignment.inventory_item_id == item_id,
            InventoryAssignment.inventory_unit_id.isnot(None),
            InventoryAssignment.status.in_(ACTIVE_STATUSES),
        )
    }
    healed = 0
    for unit in db.query(InventoryUnit).filter(
        InventoryUnit.inventory_item_id == item_id, InventoryUnit.status == "ASSIGNED"
    ):
        if unit.id not in active_unit_ids:
            unit.status = "AVAILABLE"
            healed += 1
    if healed:
        db.commit()
        log.info("inventory_units_healed", item_id=str(item_id), count=healed)
    return healed


def apply_package(
    db: Session,
    package: InventoryPackage,
    milestone: Milestone,
    *,
    actor_id: Optional[uuid.UUID] = None,
    skip_insufficient: bool = False,
) -> Tuple[List[InventoryAssignment], List[str]]:
    """
    Assign every package line to the milestone. Serial-tracked items take N AVAILABLE units,
    other items a single bulk assignment. Call inside `allocation(db)`.

    With skip_insufficient the short lines are reported as warnings; otherwise the first short
    line raises and the surrounding transaction rolls back.
    """
    assignments: List[InventoryAssignment] = []
    warnings: List[str] = []
    for line in package.items:
        item = lock_item(db, line.inventory_item_id)
        if item is None:
            continue
        available = available_quantity(db, item)
        if item.track_serial_numbers:
            units = (
                db.query(InventoryUnit)
                .filter(InventoryUnit.inventory_item_id == item.id, InventoryUnit.status == "AVAILABLE")
                .order_by(InventoryUnit.created_at)
                .limit(line.quantity)
                .all()
            )
            usable = min(len(units), available)
            if usable < line.quantity:
                message = f"Insufficient units for {item.name}. Available: {usable}, Required: {line.quantity}"
                if skip_insufficient:
                    warnings.append(message)
                    continue
                raise InsufficientInventory(usable, line.quantity, message)
            for unit in units:
                assignments.append(create_assignment(
                    db, item_id=item.id, unit_id=unit.id, milestone_id=milestone.id, actor_id=actor_id,
                ))
        else:
            if available < line.quantity:
                message = f"Insufficient inventory for {item.name}. Available: {available}, Required: {line.quantity}"
                if skip_insufficient:
                    warnings.append(message)
                    continue
                raise InsufficientInventory(available, line.quantity, message)
            assignments.append(create_assignment(
                db, item_id=item.id, milestone_id=milestone.id, quantity=line.quantity, actor_id=actor_id,
            ))
    return assignments, warnings


def release_units(assignments: Iterable[InventoryAssignment]) -> None:
    """Free the units held by assignments that are about to be deleted with their parent."""
    for assignment in assignments:
        if assignment.unit is not None and assignment.status == "ASSIGNED":
            assignment.unit.status = "AVAILABLE"
