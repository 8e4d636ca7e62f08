"""Role-scoped read views over both request kinds.

A request is visible to its owner and to admins. Anyone else gets the same
NotFound as for an unknown id so request ids cannot be guessed.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session

from app.core.auth import ROLE_ADMIN, CurrentUser, require_role, require_session
from app.core.config import get_settings
from app.core.dependencies import utcnow
from app.models.request import (
    AuditLog,
    CompanyAssociate,
    CompanyRequest,
    Payment,
    RequestMessage,
    ServiceRequest,
)
from app.schemas.admin import DashboardStats
from app.schemas.request import (
    AssociateOut,
    AuditLogOut,
    CompanyRequestOut,
    PaymentOut,
    RequestDetail,
    RequestKind,
    RequestListResponse,
    RequestStatus,
    ServiceRequestOut,
)
from app.services.errors import NotFound
from app.services.transition_service import AnyRequest

REQUEST_MODELS = {
    RequestKind.COMPANY.value: CompanyRequest,
    RequestKind.SERVICE.value: ServiceRequest,
}

OPEN_STATUSES = (
    RequestStatus.PENDING.value,
    RequestStatus.PENDING_QUOTE.value,
    RequestStatus.IN_PROGRESS.value,
)


def parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def get_request(db: Session, kind: Union[RequestKind, str], request_id: Any) -> AnyRequest:
    kind_value = kind.value if isinstance(kind, RequestKind) else str(kind)
    model = REQUEST_MODELS.get(kind_value)
    parsed = parse_uuid(request_id)
    if model is None or parsed is None:
        raise NotFound("Demande introuvable")
    request = db.get(model, parsed)
    if request is None:
        raise NotFound("Demande introuvable")
    return request


def ensure_request_access(request: AnyRequest, session: Optional[CurrentUser]) -> CurrentUser:
    actor = require_session(session)
    if actor.is_admin or str(request.user_id) == actor.id:
        return actor
    raise NotFound("Demande introuvable")


def get_request_for(
    db: Session,
    kind: Union[RequestKind, str],
    request_id: Any,
    session: Optional[CurrentUser],
) -> AnyRequest:
    """Load a request and check the caller may see it."""
    request = get_request(db, kind, request_id)
    ensure_request_access(request, session)
    return request


# ─── Converters ────────────────────────────────────────


def _common_fields(request: AnyRequest) -> dict:
    return {
        "id": str(request.id),
        "tracking_number": request.tracking_number,
        "user_id": str(request.user_id),
        "status": request.status,
        "payment_status": request.payment_status,
        "estimated_price": request.estimated_price,
        "quote_required": request.estimated_price is None,
        "currency": get_settings().currency,
        "contact_name": request.contact_name,
        "phone": request.phone,
        "email": request.email,
        "company_name": request.company_name,
        "client_rating": request.client_rating,
        "client_review": request.client_review,
        "closed_at": request.closed_at,
        "closed_by": request.closed_by,
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def request_to_out(request: AnyRequest) -> Union[CompanyRequestOut, ServiceRequestOut]:
    if isinstance(request, CompanyRequest):
        return CompanyRequestOut(
            **_common_fields(request),
            structure_type=request.structure_type,
            capital=request.capital,
            activity=request.activity,
            city=request.city,
            commune=request.commune,
            neighborhood=request.neighborhood,
            address=request.address,
            additional_services=list(request.additional_services or []),
        )
    return ServiceRequestOut(
        **_common_fields(request),
        service_type=request.service_type,
        service_details=dict(request.service_details or {}),
    )


def _as_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def associate_to_out(associate: CompanyAssociate) -> AssociateOut:
    return AssociateOut(
        id=str(associate.id),
        full_name=associate.full_name,
        phone=associate.phone,
        email=associate.email,
        residence_address=associate.residence_address,
        profession=associate.profession,
        marital_status=associate.marital_status,
        marital_regime=associate.marital_regime,
        id_number=associate.id_number,
        cash_contribution=_as_float(associate.cash_contribution),
        nature_contribution_value=_as_float(associate.nature_contribution_value),
        nature_contribution_description=associate.nature_contribution_description,
        percentage=_as_float(associate.percentage),
        share_start=associate.share_start,
        share_end=associate.share_end,
        is_manager=bool(associate.is_manager),
        is_unique_owner=bool(associate.is_unique_owner),
    )


def payment_to_out(payment: Payment) -> PaymentOut:
    return PaymentOut(
        id=str(payment.id),
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        transaction_id=payment.transaction_id,
        payment_method=payment.payment_method,
        paid_at=payment.paid_at,
        created_at=payment.created_at,
    )


def audit_to_out(log: AuditLog) -> AuditLogOut:
    return AuditLogOut(
        id=str(log.id),
        entity_type=log.entity_type,
        entity_id=str(log.entity_id),
        action=log.action,
        old_value=log.old_value,
        new_value=log.new_value,
        actor_type=log.actor_type,
        actor_id=log.actor_id,
        metadata=log.audit_meta,
        timestamp=log.timestamp,
    )


# ─── Lists ─────────────────────────────────────────────


def _sort_newest_first(rows: list[AnyRequest]) -> list[AnyRequest]:
    return sorted(rows, key=lambda r: (r.created_at or datetime.min), reverse=True)


def list_client_requests(db: Session, *, session: Optional[CurrentUser]) -> RequestListResponse:
    """Every request the caller owns, both kinds, newest first."""
    actor = require_session(session)
    rows: list[AnyRequest] = []
    for model in REQUEST_MODELS.values():
        rows.extend(db.execute(select(model).where(model.user_id == actor.id)).scalars().all())
    items = [request_to_out(row) for row in _sort_newest_first(rows)]
    return RequestListResponse(items=items, total=len(items))


def list_admin_requests(
    db: Session,
    *,
    session: Optional[CurrentUser],
    kind: Optional[RequestKind] = None,
    status: Optional[RequestStatus] = None,
    payment_status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> RequestListResponse:
    require_role(session, ROLE_ADMIN)
    models = [REQUEST_MODELS[kind.value]] if kind else list(REQUEST_MODELS.values())
    needle = (search or "").strip()

    rows: list[AnyRequest] = []
    for model in models:
        stmt = select(model)
        if status:
            stmt = stmt.where(model.status == status.value)
        if payment_status:
            stmt = stmt.where(model.payment_status == payment_status)
        if needle:
            pattern = f"%{needle}%"
            stmt = stmt.where(
                or_(
                    model.company_name.ilike(pattern),
                    model.contact_name.ilike(pattern),
                    model.tracking_number.ilike(pattern),
                )
            )
        rows.extend(db.execute(stmt).scalars().all())

    ordered = _sort_newest_first(rows)
    page = ordered[offset : offset + limit]
    return RequestListResponse(items=[request_to_out(row) for row in page], total=len(ordered))


# ─── Detail ────────────────────────────────────────────


def list_payments(db: Session, request: AnyRequest) -> list[Payment]:
    return (
        db.execute(
            select(Payment)
            .where(Payment.request_id == request.id, Payment.request_type == request.kind)
            .order_by(desc(Payment.created_at))
        )
        .scalars()
        .all()
    )


def list_audit_logs(db: Session, request: AnyRequest, *, session: Optional[CurrentUser]) -> list[AuditLogOut]:
    require_role(session, ROLE_ADMIN)
    logs = (
        db.execute(
            select(AuditLog)
            .where(AuditLog.entity_id == request.id, AuditLog.entity_type == f"{request.kind}_request")
            .order_by(desc(AuditLog.timestamp))
        )
        .scalars()
        .all()
    )
    return [audit_to_out(log) for log in logs]


def count_unread(db: Session, request: AnyRequest, *, reader_role: str) -> int:
    """Messages the other party sent that ``reader_role`` has not read yet."""
    return int(
        db.execute(
            select(func.count(RequestMessage.id)).where(
                RequestMessage.request_id == request.id,
                RequestMessage.request_type == request.kind,
                RequestMessage.sender_role != reader_role,
                RequestMessage.is_read.is_(False),
            )
        ).scalar_one()
    )


def get_request_detail(
    db: Session,
    kind: Union[RequestKind, str],
    request_id: Any,
    *,
    session: Optional[CurrentUser],
) -> RequestDetail:
    request = get_request(db, kind, request_id)
    actor = ensure_request_access(request, session)

    associates = []
    if isinstance(request, CompanyRequest):
        associates = [associate_to_out(a) for a in request.associates]

    return RequestDetail(
        request=request_to_out(request),
        associates=associates,
        payments=[payment_to_out(p) for p in list_payments(db, request)],
        unread_messages=count_unread(db, request, reader_role=actor.party),
        audit_logs=list_audit_logs(db, request, session=actor) if actor.is_admin else None,
    )


# ─── Dashboard ─────────────────────────────────────────


def _month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _previous_month_start(value: datetime) -> datetime:
    start = _month_start(value)
    if start.month == 1:
        return start.replace(year=start.year - 1, month=12)
    return start.replace(month=start.month - 1)


def _count(db: Session, model, *conditions) -> int:
    return int(db.execute(select(func.count(model.id)).where(*conditions)).scalar_one())


def dashboard_stats(db: Session, *, session: Optional[CurrentUser]) -> DashboardStats:
    require_role(session, ROLE_ADMIN)
    now = utcnow()
    this_month = _month_start(now)
    last_month = _previous_month_start(now)

    open_count = 0
    completed_count = 0
    quote_count = 0
    estimated = 0
    for model in REQUEST_MODELS.values():
        open_count += _count(db, model, model.status.in_(OPEN_STATUSES))
        completed_count += _count(db, model, model.status == RequestStatus.COMPLETED.value)
        quote_count += _count(db, model, model.estimated_price.is_(None))
        estimated += int(db.execute(select(func.coalesce(func.sum(model.estimated_price), 0))).scalar_one())

    paid = int(
        db.execute(select(func.coalesce(func.sum(Payment.amount), 0)).where(Payment.status == "paid")).scalar_one()
    )

    return DashboardStats(
        company_requests=_count(db, CompanyRequest),
        service_requests=_count(db, ServiceRequest),
        open_requests=open_count,
        completed_requests=completed_count,
        quote_required=quote_count,
        total_estimated_revenue=estimated,
        paid_revenue=paid,
        company_requests_this_month=_count(db, CompanyRequest, CompanyRequest.created_at >= this_month),
        company_requests_last_month=_count(
            db,
            CompanyRequest,
            CompanyRequest.created_at >= last_month,
            CompanyRequest.created_at < this_month,
        ),
        currency=get_settings().currency,
    )
