from pydantic import BaseModel
from typing import Optional


class CheckMicrosoftResponse(BaseModel):
    microsoft_enabled: bool


class MeResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    provider: Optional[str] = None
    image: Optional[str] = None
    token_error: Optional[str] = None
