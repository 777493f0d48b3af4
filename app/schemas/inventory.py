import enum
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .common import blank_to_none, required_text


class UnitStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    ASSIGNED = "ASSIGNED"
    USED = "USED"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "ASSIGNED"
    USED = "USED"
    RETURNED = "RETURNED"


_ITEM_TEXT_FIELDS = (
    "description", "sku", "part_number", "category", "location", "supplier", "distributor",
    "distributor_contact", "order_link", "order_phone", "order_email", "notes",
)


class ItemCreate(BaseModel):
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    part_number: Optional[str] = None
    category: Optional[str] = None
    job_type_id: Optional[uuid.UUID] = None
    track_serial_numbers: bool = False
    quantity: int = Field(default=0, ge=0)
    threshold: int = Field(default=0, ge=0)
    unit: str = "each"
    location: Optional[str] = None
    supplier: Optional[str] = None
    distributor: Optional[str] = None
    distributor_contact: Optional[str] = None
    order_link: Optional[str] = None
    order_phone: Optional[str] = None
    order_email: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator(*_ITEM_TEXT_FIELDS, mode="before")(blank_to_none)

    @field_validator("unit", mode="before")
    @classmethod
    def default_unit(cls, v):
        return blank_to_none(v) or "each"


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    sku: Optional[str] = None
    part_number: Optional[str] = None
    category: Optional[str] = None
    job_type_id: Optional[uuid.UUID] = None
    track_serial_numbers: Optional[bool] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    threshold: Optional[int] = Field(default=None, ge=0)
    unit: Optional[str] = None
    location: Optional[str] = None
    supplier: Optional[str] = None
    distributor: Optional[str] = None
    distributor_contact: Optional[str] = None
    order_link: Optional[str] = None
    order_phone: Optional[str] = None
    order_email: Optional[str] = None
    cost: Optional[float] = None
    notes: Optional[str] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator(*_ITEM_TEXT_FIELDS, mode="before")(blank_to_none)


class UnitCreate(BaseModel):
    inventory_item_id: uuid.UUID
    serial_number: Optional[str] = None
    asset_tag: Optional[str] = None
    notes: Optional[str] = None

    clean_text = field_validator("serial_number", "asset_tag", "notes", mode="before")(blank_to_none)


class UnitUpdate(BaseModel):
    serial_number: Optional[str] = None
    asset_tag: Optional[str] = None
    status: Optional[UnitStatus] = None
    notes: Optional[str] = None

    clean_text = field_validator("serial_number", "asset_tag", "notes", mode="before")(blank_to_none)


class AssignmentCreate(BaseModel):
    inventory_item_id: uuid.UUID
    inventory_unit_id: Optional[uuid.UUID] = None
    milestone_id: Optional[uuid.UUID] = None
    project_id: Optional[uuid.UUID] = None
    quantity: int = 1
    notes: Optional[str] = None

    clean_text = field_validator("notes", mode="before")(blank_to_none)


class AssignmentUpdate(BaseModel):
    status: Optional[AssignmentStatus] = None
    quantity: Optional[int] = None
    notes: Optional[str] = None

    clean_text = field_validator("notes", mode="before")(blank_to_none)


class PackageItemIn(BaseModel):
    inventory_item_id: uuid.UUID
    quantity: int = Field(default=1, ge=1)


class PackageCreate(BaseModel):
    name: str
    description: Optional[str] = None
    job_type_id: uuid.UUID
    is_default: bool = False
    items: List[PackageItemIn] = []

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)


class PackageUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    job_type_id: Optional[uuid.UUID] = None
    is_default: Optional[bool] = None
    items: Optional[List[PackageItemIn]] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)


class PackageApply(BaseModel):
    milestone_id: uuid.UUID


class JobTypeCreate(BaseModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    order: int = 0

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", "color", mode="before")(blank_to_none)


class JobTypeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", "color", mode="before")(blank_to_none)


class JobTypeResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    order: int = 0

    class Config:
        from_attributes = True
