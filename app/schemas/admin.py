import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .common import naive_utc


class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


class BackupFrequency(str, enum.Enum):
    every_10_minutes = "10min"
    every_30_minutes = "30min"
    hourly = "hourly"
    daily = "daily"
    weekly = "weekly"


class RoleUpdate(BaseModel):
    role: UserRole


class LabelSettingsUpdate(BaseModel):
    label_width: Optional[float] = Field(default=None, gt=0)
    label_height: Optional[float] = Field(default=None, gt=0)
    qr_code_size: Optional[int] = Field(default=None, gt=0)
    font_size: Optional[int] = Field(default=None, gt=0)
    show_item_name: Optional[bool] = None
    show_asset_tag: Optional[bool] = None
    show_serial_number: Optional[bool] = None
    show_qr_code: Optional[bool] = None
    label_template: Optional[str] = None


class BackupRequest(BaseModel):
    upload_to_sharepoint: bool = False


class BackupScheduleRequest(BaseModel):
    enabled: bool = False
    frequency: BackupFrequency
    start_time: Optional[datetime] = None

    clean_dates = field_validator("start_time")(naive_utc)
