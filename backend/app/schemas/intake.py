"""Company wizard and service request payloads.

Fields default to empty values: the wizard gates decide which ones are
required at each step, so a partially filled wizard still parses.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field

from app.schemas.request import (
    AdditionalService,
    CompanyRequestOut,
    ServiceRequestOut,
    ServiceType,
    StructureType,
)


class CompanyIdentification(BaseModel):
    structure_type: Optional[StructureType] = None
    company_name: str = ""
    sigle: str = ""
    capital: str = ""
    activities: str = ""
    bank: str = ""


class CompanyLocation(BaseModel):
    city: str = ""
    commune: str = ""
    neighborhood: str = ""
    reference: str = ""
    postal_box: str = ""


class ManagerInfo(BaseModel):
    full_name: str = ""
    mandate_duration: str = ""
    phone: str = ""
    email: str = ""
    residence: str = ""
    marital_status: str = ""
    marital_regime: str = ""


class AssociateIn(BaseModel):
    full_name: str = ""
    phone: str = ""
    email: str = ""
    residence_address: str = ""
    profession: str = ""
    marital_status: str = ""
    marital_regime: str = ""
    id_number: str = ""
    cash_contribution: Optional[float] = Field(default=None, ge=0)
    nature_contribution_value: Optional[float] = Field(default=None, ge=0)
    nature_contribution_description: str = ""
    percentage: Optional[float] = Field(default=None, ge=0, le=100)
    share_start: Optional[int] = Field(default=None, ge=1)
    share_end: Optional[int] = Field(default=None, ge=1)
    is_manager: bool = False


class CompanyWizardData(BaseModel):
    identification: CompanyIdentification = Field(default_factory=CompanyIdentification)
    location: CompanyLocation = Field(default_factory=CompanyLocation)
    manager: ManagerInfo = Field(default_factory=ManagerInfo)
    associates: list[AssociateIn] = Field(default_factory=lambda: [AssociateIn()])
    additional_services: list[AdditionalService] = Field(default_factory=list)


class StepCheckRequest(BaseModel):
    step: int = Field(..., ge=1, le=6)
    data: CompanyWizardData


class StepCheckResponse(BaseModel):
    step: int
    can_advance: bool
    missing_fields: list[str] = Field(default_factory=list)
    next_step: Optional[int] = None
    single_associate: bool = False


class PriceQuoteRequest(BaseModel):
    city: str = ""
    additional_services: list[AdditionalService] = Field(default_factory=list)


class PriceQuoteResponse(BaseModel):
    amount: Optional[int] = None
    currency: str
    quote_required: bool


class CompanySubmissionResponse(BaseModel):
    request: CompanyRequestOut
    quote_required: bool
    payment_url: Optional[str] = None
    payment_error: Optional[str] = None
    message: str


class ServiceRequestCreate(BaseModel):
    service_type: ServiceType
    contact_name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=6, max_length=32)
    email: EmailStr
    company_name: Optional[str] = Field(default=None, max_length=200)
    service_details: dict[str, Any] = Field(default_factory=dict)


class ServiceSubmissionResponse(BaseModel):
    request: ServiceRequestOut
    message: str
