"""Company wizard checks and request submission."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, get_current_user
from app.core.dependencies import get_db
from app.schemas.intake import (
    CompanySubmissionResponse,
    CompanyWizardData,
    PriceQuoteRequest,
    PriceQuoteResponse,
    ServiceRequestCreate,
    ServiceSubmissionResponse,
    StepCheckRequest,
    StepCheckResponse,
)
from app.services.intake_service import (
    LAST_STEP,
    compute_price,
    is_single_associate,
    load_tariffs,
    missing_fields,
    submit_company_request,
    submit_service_request,
)
from app.services.payment_service import PaymentGateway, get_payment_gateway
from app.utils.rate_limit import get_client_ip, get_user_agent

router = APIRouter()


@router.post("/intake/company/validate-step", response_model=StepCheckResponse)
async def validate_step(payload: StepCheckRequest):
    missing = missing_fields(payload.step, payload.data)
    can_advance = not missing
    next_step = payload.step + 1 if can_advance and payload.step < LAST_STEP else None
    return StepCheckResponse(
        step=payload.step,
        can_advance=can_advance,
        missing_fields=missing,
        next_step=next_step,
        single_associate=is_single_associate(payload.data.identification.structure_type),
    )


@router.post("/intake/company/price", response_model=PriceQuoteResponse)
async def quote_price(payload: PriceQuoteRequest, db: Session = Depends(get_db)):
    tariffs = load_tariffs(db)
    amount = compute_price(payload.city, payload.additional_services, tariffs)
    return PriceQuoteResponse(amount=amount, currency=tariffs.currency, quote_required=amount is None)


@router.post("/requests/company", response_model=CompanySubmissionResponse, status_code=201)
async def create_company_request(
    payload: CompanyWizardData,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    return submit_company_request(
        db,
        data=payload,
        session=current_user,
        gateway=gateway,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


@router.post("/requests/service", response_model=ServiceSubmissionResponse, status_code=201)
async def create_service_request(
    payload: ServiceRequestCreate,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return submit_service_request(
        db,
        payload=payload,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
