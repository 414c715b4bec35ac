from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class LinkCreate(BaseModel):
    # Validated by the registry so malformed input maps to 404, not 422.
    url: str


class LinkRead(BaseModel):
    id: int
    code: str
    url: str
    title: str
    base_url: Optional[str] = None
    owner_id: Optional[str] = None
    visits: int
    created_at: datetime

    class Config:
        from_attributes = True
