from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, EmailStr, Field

from app.schemas.request import StructureType


class StaffRole(str, Enum):
    ADMIN = "admin"
    SERVICE_CLIENT = "service_client"
    SUPERVISEUR = "superviseur"
    COMPTABLE = "comptable"
    CONTROLE_QUALITE = "controle_qualite"


class DashboardStats(BaseModel):
    company_requests: int
    service_requests: int
    open_requests: int
    completed_requests: int
    quote_required: int
    total_estimated_revenue: int
    paid_revenue: int
    company_requests_this_month: int
    company_requests_last_month: int
    currency: str


class SiteSettingIn(BaseModel):
    value: Any


class SiteSettingOut(BaseModel):
    key: str
    value: Any
    category: str
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class SiteSettingListResponse(BaseModel):
    items: List[SiteSettingOut]


class StaffCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=32)
    role: StaffRole


class StaffUpdate(BaseModel):
    role: Optional[StaffRole] = None
    is_active: Optional[bool] = None
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=32)


class StaffOut(BaseModel):
    id: str
    user_id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    role: StaffRole
    is_active: bool
    created_at: Optional[datetime] = None


class StaffListResponse(BaseModel):
    items: List[StaffOut]


class TestimonialIn(BaseModel):
    founder_name: str = Field(..., min_length=1, max_length=200)
    name: str = Field(..., min_length=1, max_length=200)
    type: StructureType
    region: str = Field(..., min_length=1, max_length=120)
    district: Optional[str] = Field(default=None, max_length=120)
    testimonial: str = Field(..., min_length=1, max_length=2000)
    rating: int = Field(..., ge=1, le=5)
    website: Optional[str] = Field(default=None, max_length=255)


class TestimonialOut(BaseModel):
    id: str
    founder_name: str
    name: str
    type: str
    region: str
    district: Optional[str] = None
    testimonial: Optional[str] = None
    rating: Optional[int] = None
    website: Optional[str] = None
    show_publicly: bool
    created_at: Optional[datetime] = None


class TestimonialListResponse(BaseModel):
    items: List[TestimonialOut]


class TestimonialVisibility(BaseModel):
    show_publicly: bool


class ContactMessageIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(..., min_length=6, max_length=32)
    subject: Optional[str] = Field(default=None, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)


class ContactMessageOut(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    subject: Optional[str] = None
    message: str
    status: str
    created_at: Optional[datetime] = None


class ContactMessageListResponse(BaseModel):
    items: List[ContactMessageOut]
