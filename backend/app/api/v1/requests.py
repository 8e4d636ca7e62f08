"""Request views and lifecycle actions for owners and staff."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, get_current_user, require_roles
from app.core.dependencies import get_db
from app.schemas.request import (
    AuditLogOut,
    FeedbackRequest,
    ManualPaymentRequest,
    PaymentInitResponse,
    PaymentOut,
    PaymentStatus,
    QuoteRequest,
    RequestDetail,
    RequestKind,
    RequestListResponse,
    RequestStatus,
    TransitionRequest,
)
from app.services import payment_service, request_service
from app.services.payment_service import PaymentGateway, get_payment_gateway
from app.services.transition_service import apply_transition, set_client_feedback, set_quote
from app.utils.rate_limit import get_client_ip, get_user_agent

router = APIRouter()


# ─── Owner ────────────────────────────────────────────


@router.get("/requests", response_model=RequestListResponse)
async def list_my_requests(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return request_service.list_client_requests(db, session=current_user)


@router.get("/requests/{kind}/{request_id}", response_model=RequestDetail)
async def get_request_detail(
    kind: RequestKind,
    request_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return request_service.get_request_detail(db, kind, request_id, session=current_user)


@router.post("/requests/{kind}/{request_id}/feedback", response_model=RequestDetail)
async def leave_feedback(
    kind: RequestKind,
    request_id: str,
    payload: FeedbackRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = request_service.get_request_for(db, kind, request_id, current_user)
    set_client_feedback(
        db,
        request=target,
        session=current_user,
        rating=payload.rating,
        review=payload.review,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.commit()
    return request_service.get_request_detail(db, kind, request_id, session=current_user)


@router.post("/requests/{kind}/{request_id}/pay", response_model=PaymentInitResponse)
async def pay_request(
    kind: RequestKind,
    request_id: str,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    target = request_service.get_request_for(db, kind, request_id, current_user)
    payment, payment_url = payment_service.pay(
        db,
        request=target,
        session=current_user,
        gateway=gateway,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return PaymentInitResponse(
        payment_id=str(payment.id),
        payment_url=payment_url,
        amount=payment.amount,
        currency=payment.currency,
    )


# ─── Admin ────────────────────────────────────────────


@router.get("/admin/requests", response_model=RequestListResponse)
async def admin_list_requests(
    kind: Optional[RequestKind] = Query(None),
    status: Optional[RequestStatus] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    q: Optional[str] = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    return request_service.list_admin_requests(
        db,
        session=current_user,
        kind=kind,
        status=status,
        payment_status=payment_status.value if payment_status else None,
        search=q,
        limit=limit,
        offset=offset,
    )


@router.post("/admin/requests/{kind}/{request_id}/transition", response_model=RequestDetail)
async def admin_transition(
    kind: RequestKind,
    request_id: str,
    payload: TransitionRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # apply_transition enforces the admin role.
    target = request_service.get_request(db, kind, request_id)
    apply_transition(
        db,
        request=target,
        new_status=payload.new_status,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.commit()
    return request_service.get_request_detail(db, kind, request_id, session=current_user)


@router.post("/admin/requests/{kind}/{request_id}/quote", response_model=RequestDetail)
async def admin_set_quote(
    kind: RequestKind,
    request_id: str,
    payload: QuoteRequest,
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target = request_service.get_request(db, kind, request_id)
    set_quote(
        db,
        request=target,
        amount=payload.amount,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    db.commit()
    return request_service.get_request_detail(db, kind, request_id, session=current_user)


@router.post("/admin/requests/{kind}/{request_id}/payments/manual", response_model=PaymentOut)
async def admin_record_manual_payment(
    kind: RequestKind,
    request_id: str,
    payload: ManualPaymentRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    target = request_service.get_request(db, kind, request_id)
    payment = payment_service.record_manual_payment(
        db,
        request=target,
        session=current_user,
        payment_method=payload.payment_method,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return request_service.payment_to_out(payment)


@router.get("/admin/requests/{kind}/{request_id}/audit", response_model=List[AuditLogOut])
async def admin_request_audit(
    kind: RequestKind,
    request_id: str,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    target = request_service.get_request(db, kind, request_id)
    return request_service.list_audit_logs(db, target, session=current_user)
