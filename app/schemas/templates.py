from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import blank_to_none, required_text


class TemplateTaskIn(BaseModel):
    name: str
    description: Optional[str] = None
    order: Optional[int] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)


class TemplateMilestoneIn(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    order: Optional[int] = None
    tasks: List[TemplateTaskIn] = []

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", "category", mode="before")(blank_to_none)


class TemplateCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: Optional[str] = None
    is_default: bool = Field(default=False, alias="isDefault")
    milestones: List[TemplateMilestoneIn] = []

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)


class TemplateUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    is_default: Optional[bool] = Field(default=None, alias="isDefault")
    milestones: Optional[List[TemplateMilestoneIn]] = None

    check_name = field_validator("name", mode="before")(required_text)
    clean_text = field_validator("description", mode="before")(blank_to_none)


class TemplateBundle(BaseModel):
    """Bulk export/import envelope."""

    model_config = ConfigDict(populate_by_name=True)

    version: Optional[str] = None
    exported_at: Optional[str] = Field(default=None, alias="exportedAt")
    templates: List[TemplateCreate]
