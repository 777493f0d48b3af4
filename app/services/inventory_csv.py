"""
Inventory CSV export / import.

Column order is fixed; "Available" is derived on export and ignored on import.
"""
import csv
import io
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.models import InventoryItem, JobType
from .inventory import assigned_quantities, assigned_quantity, stock_levels


CSV_HEADERS = [
    "Name",
    "Description",
    "SKU",
    "Part Number",
    "Category",
    "Job Type",
    "Quantity",
    "Available",
    "Threshold",
    "Unit",
    "Track Serial Numbers",
    "Location",
    "Supplier",
    "Distributor",
    "Distributor Contact",
    "Order Link",
    "Order Phone",
    "Order Email",
    "Cost",
    "Notes",
]

EXAMPLE_ROW = [
    "Example Item",
    "Example description",
    "SKU-001",
    "PN-001",
    "Cables",
    "Installation",
    "10",
    "10",
    "5",
    "each",
    "No",
    "Warehouse A",
    "Example Supplier",
    "Example Distributor",
    "John Doe",
    "https://example.com/order",
    "555-1234",
    "orders@example.com",
    "25.99",
    "Example notes",
]

# lower-cased, space-free header -> canonical header
HEADER_SYNONYMS = {h.lower().replace(" ", ""): h for h in CSV_HEADERS}
HEADER_SYNONYMS.update({
    "jobtype": "Job Type",
    "job_type": "Job Type",
    "trackserialnumbers": "Track Serial Numbers",
    "track_serial_numbers": "Track Serial Numbers",
    "serialtracking": "Track Serial Numbers",
    "partnumber": "Part Number",
    "part_number": "Part Number",
    "qty": "Quantity",
})

TEXT_COLUMNS = {
    "description": "Description",
    "sku": "SKU",
    "part_number": "Part Number",
    "category": "Category",
    "location": "Location",
    "supplier": "Supplier",
    "distributor": "Distributor",
    "distributor_contact": "Distributor Contact",
    "order_link": "Order Link",
    "order_phone": "Order Phone",
    "order_email": "Order Email",
    "notes": "Notes",
}


class CsvImportError(ValueError):
    pass


def _fmt_number(v) -> str:
    if v is None:
        return ""
    return str(int(v)) if float(v).is_integer() else str(v)


def _write(rows: List[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    writer.writerows(rows)
    return buffer.getvalue()


def export_csv(db: Session) -> str:
    items = db.query(InventoryItem).order_by(InventoryItem.name.asc()).all()
    assigned = assigned_quantities(db, [i.id for i in items])
    rows = []
    for item in items:
        levels = stock_levels(item, assigned.get(item.id, 0))
        rows.append([
            item.name,
            item.description or "",
            item.sku or "",
            item.part_number or "",
            item.category or "",
            item.job_type.name if item.job_type else "",
            str(item.quantity),
            str(levels["available"]),
            str(item.threshold),
            item.unit or "each",
            "Yes" if item.track_serial_numbers else "No",
            item.location or "",
            item.supplier or "",
            item.distributor or "",
            item.distributor_contact or "",
            item.order_link or "",
            item.order_phone or "",
            item.order_email or "",
            _fmt_number(item.cost),
            item.notes or "",
        ])
    return _write(rows)


def template_csv() -> str:
    return _write([EXAMPLE_ROW])


def _canonical(header: Optional[str]) -> str:
    clean = (header or "").strip().strip('"')
    return HEADER_SYNONYMS.get(clean.lower().replace(" ", ""), clean)


def _int(value: str, column: str) -> int:
    value = (value or "").strip()
    if not value:
        return 0
    try:
        return int(float(value))
    except ValueError:
        raise CsvImportError(f"{column} must be a number")


def _bool(value: str) -> bool:
    return (value or "").strip().lower() in ("yes", "true", "1", "y")


def import_csv(db: Session, text: str) -> Dict[str, object]:
    """Upsert items by name or SKU. Row-level problems are collected, not raised."""
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise CsvImportError("CSV file must have at least a header row and one data row")

    reader = csv.DictReader(io.StringIO(text), quoting=csv.QUOTE_MINIMAL)
    reader.fieldnames = [_canonical(h) for h in reader.fieldnames or []]
    job_types = {jt.name.lower(): jt.id for jt in db.query(JobType).all()}

    created = updated = 0
    errors: List[str] = []
    for row_num, row in enumerate(reader, start=2):
        values = {k: (v or "").strip() for k, v in row.items() if k}
        name = values.get("Name")
        if not name:
            errors.append(f"Row {row_num}: Name is required")
            continue
        try:
            quantity = _int(values.get("Quantity", ""), "Quantity")
            threshold = _int(values.get("Threshold", ""), "Threshold")
            cost_raw = values.get("Cost", "")
            try:
                cost = float(cost_raw) if cost_raw else None
            except ValueError:
                raise CsvImportError("Cost must be a number")
        except CsvImportError as e:
            errors.append(f"Row {row_num}: {e}")
            continue
        if quantity < 0 or threshold < 0:
            errors.append(f"Row {row_num}: Quantity and Threshold cannot be negative")
            continue

        job_type_id = None
        job_type_name = values.get("Job Type")
        if job_type_name:
            job_type_id = job_types.get(job_type_name.lower())
            if job_type_id is None:
                errors.append(f'Row {row_num}: Job type "{job_type_name}" not found. Item will be uncategorized.')

        data = {column: values.get(header) or None for column, header in TEXT_COLUMNS.items()}
        data.update({
            "name": name,
            "job_type_id": job_type_id,
            "quantity": quantity,
            "threshold": threshold,
            "unit": values.get("Unit") or "each",
            "track_serial_numbers": _bool(values.get("Track Serial Numbers", "")),
            "cost": cost,
        })

        match = [InventoryItem.name == name]
        if data["sku"]:
            match.append(InventoryItem.sku == data["sku"])
        existing = db.query(InventoryItem).filter(or_(*match)).first()
        if existing is not None:
            assigned = assigned_quantity(db, existing.id)
            if quantity < assigned:
                errors.append(f"Row {row_num}: Quantity cannot be less than the assigned quantity ({assigned})")
                continue
            for k, v in data.items():
                setattr(existing, k, v)
            updated += 1
        else:
            db.add(InventoryItem(**data))
            created += 1
        db.flush()

    db.commit()
    message = f"Import completed: {created} created, {updated} updated"
    if errors:
        message += f", {len(errors)} errors"
    return {"success": True, "created": created, "updated": updated, "errors": errors, "message": message}
