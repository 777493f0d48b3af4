import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from .common import blank_to_none, naive_utc, required_text


class ProjectStatus(str, enum.Enum):
    INITIAL_CONTACT = "INITIAL_CONTACT"
    QUOTE_SENT = "QUOTE_SENT"
    QUOTE_APPROVED = "QUOTE_APPROVED"
    CONTRACT_SIGNED = "CONTRACT_SIGNED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    PARTS_ORDERED = "PARTS_ORDERED"
    PARTS_RECEIVED = "PARTS_RECEIVED"
    INSTALLATION_SCHEDULED = "INSTALLATION_SCHEDULED"
    INSTALLATION_IN_PROGRESS = "INSTALLATION_IN_PROGRESS"
    INSTALLATION_COMPLETE = "INSTALLATION_COMPLETE"
    FINAL_INSPECTION = "FINAL_INSPECTION"
    PROJECT_COMPLETE = "PROJECT_COMPLETE"
    ON_HOLD = "ON_HOLD"
    CANCELLED = "CANCELLED"


class MilestoneStatus(str, enum.Enum):
    PENDING = "PENDING"
    PENDING_WAITING_FOR_INFO = "PENDING_WAITING_FOR_INFO"
    PENDING_SCHEDULED = "PENDING_SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ON_HOLD = "ON_HOLD"


class TaskStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    BLOCKED = "BLOCKED"


class CommunicationType(str, enum.Enum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"
    NOTE = "NOTE"


class CommunicationDirection(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


_PROJECT_TEXT_FIELDS = (
    "description", "location", "address", "city", "state", "zip_code",
    "gc_contact_name", "gc_contact_email", "cds_contact_name", "cds_contact_email",
    "franchise_owner_contact_name", "franchise_owner_contact_email",
)


class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    gc_contact_name: Optional[str] = None
    gc_contact_email: Optional[str] = None
    cds_contact_name: Optional[str] = None
    cds_contact_email: Optional[str] = None
    franchise_owner_contact_name: Optional[str] = None
    franchise_owner_contact_email: Optional[str] = None
    status: Optional[ProjectStatus] = None
    job_type_id: Optional[uuid.UUID] = None
    template_id: Optional[uuid.UUID] = None
    package_id: Optional[uuid.UUID] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator(*_PROJECT_TEXT_FIELDS, mode="before")(blank_to_none)


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    gc_contact_name: Optional[str] = None
    gc_contact_email: Optional[str] = None
    cds_contact_name: Optional[str] = None
    cds_contact_email: Optional[str] = None
    franchise_owner_contact_name: Optional[str] = None
    franchise_owner_contact_email: Optional[str] = None
    status: Optional[ProjectStatus] = None
    job_type_id: Optional[uuid.UUID] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator(*_PROJECT_TEXT_FIELDS, mode="before")(blank_to_none)


class MilestoneCreate(BaseModel):
    project_id: uuid.UUID
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    is_important: bool = False
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", "category", mode="before")(blank_to_none)
    clean_dates = field_validator("due_date")(naive_utc)


class MilestoneUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    status: Optional[MilestoneStatus] = None
    is_important: Optional[bool] = None
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", "category", mode="before")(blank_to_none)
    clean_dates = field_validator("due_date")(naive_utc)


class TaskCreate(BaseModel):
    milestone_id: uuid.UUID
    name: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    is_important: bool = False
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)
    clean_dates = field_validator("due_date")(naive_utc)


class TaskUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    is_important: Optional[bool] = None
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)
    clean_dates = field_validator("due_date")(naive_utc)


class CommentCreate(BaseModel):
    content: str

    check_content = field_validator("content", mode="before")(required_text)


class CommunicationCreate(BaseModel):
    project_id: uuid.UUID
    type: CommunicationType
    content: str
    subject: Optional[str] = None
    direction: Optional[CommunicationDirection] = None
    milestone_id: Optional[uuid.UUID] = None

    check_content = field_validator("content", mode="before")(required_text)
    clean_subject = field_validator("subject", mode="before")(blank_to_none)

    @field_validator("direction", mode="before")
    @classmethod
    def blank_direction(cls, v):
        return blank_to_none(v)


class CalendarEventCreate(BaseModel):
    title: str
    start_date: datetime
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    all_day: bool = False
    location: Optional[str] = None
    project_id: Optional[uuid.UUID] = None

    check_title = field_validator("title", mode="before")(required_text)
    clean_text = field_validator("description", "location", mode="before")(blank_to_none)
    clean_dates = field_validator("start_date", "end_date")(naive_utc)


class CalendarEventUpdate(BaseModel):
    title: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None
    all_day: Optional[bool] = None
    location: Optional[str] = None
    project_id: Optional[uuid.UUID] = None

    check_title = field_validator("title", mode="before")(required_text)
    clean_text = field_validator("description", "location", mode="before")(blank_to_none)
    clean_dates = field_validator("start_date", "end_date")(naive_utc)
