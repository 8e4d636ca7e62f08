from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.request import RequestKind, RequestStatus


class TrackingLookupRequest(BaseModel):
    tracking_number: str = Field(..., min_length=1, max_length=32)
    phone: str = Field(..., min_length=1, max_length=32)


class PublicStatusOut(BaseModel):
    """What an unauthenticated caller may see: no contact or financial detail."""

    tracking_number: str
    kind: RequestKind
    label: str
    status: RequestStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
