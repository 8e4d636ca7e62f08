import logging
from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from app.core.auth import ROLE_ADMIN, CurrentUser, require_role, require_session
from app.core.config import get_settings
from app.core.dependencies import utcnow
from app.models.request import AuditLog, CompanyRequest, ServiceRequest
from app.schemas.request import PaymentStatus, RequestKind, RequestStatus
from app.services.errors import AuthorizationError, Conflict, ValidationFailed
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

AnyRequest = Union[CompanyRequest, ServiceRequest]

# pending_quote -> pending happens only through set_quote().
ALLOWED_TRANSITIONS = {
    RequestStatus.PENDING_QUOTE: [RequestStatus.REJECTED],
    RequestStatus.PENDING: [RequestStatus.IN_PROGRESS, RequestStatus.REJECTED],
    RequestStatus.IN_PROGRESS: [RequestStatus.COMPLETED, RequestStatus.REJECTED],
    RequestStatus.COMPLETED: [],
    RequestStatus.REJECTED: [],
}

CLOSING_STATUSES = {RequestStatus.COMPLETED, RequestStatus.REJECTED}

PII_REDACTION_FALLBACK_FIELDS = {
    "phone",
    "email",
    "address",
    "residence_address",
    "id_number",
}


def _redact_pii(value: Any, redact_keys: set[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in redact_keys:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_pii(item, redact_keys)
        return redacted
    if isinstance(value, list):
        return [_redact_pii(item, redact_keys) for item in value]
    return value


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    actor_type: str,
    actor_id: Optional[str],
    ip_address: Optional[str],
    user_agent: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    settings = get_settings()
    if settings.pii_redaction_enabled:
        configured = {item.lower() for item in settings.pii_redaction_fields}
        redact_keys = configured or set(PII_REDACTION_FALLBACK_FIELDS)
        old_value = _redact_pii(old_value, redact_keys)
        new_value = _redact_pii(new_value, redact_keys)
        if metadata is not None:
            metadata = _redact_pii(metadata, redact_keys)

    log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_value=old_value,
        new_value=new_value,
        actor_type=actor_type,
        actor_id=actor_id,
        ip_address=ip_address,
        user_agent=user_agent,
        audit_meta=metadata,
    )
    db.add(log)
    try:
        alert_tracker.record(action, metadata)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)


def is_transition_allowed(current: RequestStatus, new: RequestStatus) -> bool:
    return new in ALLOWED_TRANSITIONS.get(current, [])


def apply_transition(
    db: Session,
    *,
    request: AnyRequest,
    new_status: RequestStatus,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> bool:
    """Move ``request`` to ``new_status``. Returns False when it is already there.

    The caller commits. Workflow status and payment status are independent:
    nothing here touches ``payment_status``.
    """
    actor = require_role(session, ROLE_ADMIN)
    current = RequestStatus(request.status)

    if new_status == current:
        return False

    if not is_transition_allowed(current, new_status):
        raise Conflict(f"Transition impossible : {current.value} -> {new_status.value}")

    old_status = request.status
    request.status = new_status.value
    if new_status in CLOSING_STATUSES:
        request.closed_at = utcnow()
        request.closed_by = actor.id

    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="STATUS_CHANGE",
        old_value={"status": old_status},
        new_value={"status": request.status},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return True


def set_client_feedback(
    db: Session,
    *,
    request: AnyRequest,
    session: Optional[CurrentUser],
    rating: Any,
    review: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """The only mutation the owner may make after creation."""
    actor = require_session(session)
    if actor.is_admin or str(request.user_id) != actor.id:
        raise AuthorizationError("Seul le client propriétaire peut noter cette demande")

    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationFailed("La note doit être un entier entre 1 et 5", fields=["rating"])

    if request.status != RequestStatus.COMPLETED.value:
        raise Conflict("Un avis ne peut être laissé que sur une demande terminée")

    review_text = (review or "").strip() or None
    request.client_rating = rating
    request.client_review = review_text

    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="CLIENT_FEEDBACK",
        old_value=None,
        new_value={"client_rating": rating, "has_review": review_text is not None},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def is_quote_required(request: AnyRequest) -> bool:
    """Company requests with extra services and every service request carry a manual price."""
    if request.kind == RequestKind.SERVICE.value:
        return request.status in (RequestStatus.PENDING_QUOTE.value, RequestStatus.PENDING.value)
    return request.estimated_price is None or bool(request.additional_services)


def set_quote(
    db: Session,
    *,
    request: AnyRequest,
    amount: int,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """Fix the price of a quote-required request."""
    actor = require_role(session, ROLE_ADMIN)

    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationFailed("Le montant du devis doit être positif", fields=["amount"])
    if request.payment_status == PaymentStatus.PAID.value:
        raise Conflict("Demande déjà payée")
    if RequestStatus(request.status) in CLOSING_STATUSES:
        raise Conflict("Demande clôturée")
    if not is_quote_required(request):
        raise Conflict("Le tarif de cette demande est fixe")

    old_value = {"estimated_price": request.estimated_price, "status": request.status}
    request.estimated_price = amount
    if request.kind == RequestKind.SERVICE.value and request.status == RequestStatus.PENDING_QUOTE.value:
        request.status = RequestStatus.PENDING.value

    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="QUOTE_SET",
        old_value=old_value,
        new_value={"estimated_price": amount, "status": request.status},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
