"""Payment attempts and their reconciliation into ``payment_status``.

A request can collect several attempts. ``payment_status`` on the request is
derived from them: it turns ``paid`` as soon as one attempt resolves to paid
and never goes back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import stripe
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from app.core.auth import ROLE_ADMIN, CurrentUser, require_role, require_session
from app.core.config import get_settings
from app.core.dependencies import utcnow
from app.models.request import Payment
from app.schemas.request import PaymentAttemptStatus, PaymentStatus, RequestStatus
from app.services.errors import Conflict, ExternalServiceError, NotFound, ValidationFailed
from app.services.request_service import get_request
from app.services.transition_service import AnyRequest, create_audit_log

logger = logging.getLogger(__name__)

PAYMENT_ERROR_MESSAGE = "L'initialisation du paiement a échoué, réessayez depuis votre espace client"

STRUCTURE_LABELS = {
    "company": "Création d'entreprise",
    "service": "Service administratif",
}


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    payment_url: str


class PaymentGateway(Protocol):
    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        request_id: str,
        request_type: str,
        customer_email: Optional[str],
    ) -> CheckoutSession: ...


class StripeCheckoutGateway:
    """Stripe Checkout. XOF is a zero-decimal currency: amounts go through unchanged."""

    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        request_id: str,
        request_type: str,
        customer_email: Optional[str],
    ) -> CheckoutSession:
        settings = get_settings()
        if not settings.enable_stripe or not settings.stripe_secret_key:
            raise ExternalServiceError("Le paiement en ligne n'est pas disponible")

        stripe.api_key = settings.stripe_secret_key
        metadata = {"request_id": request_id, "request_type": request_type}
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                success_url=settings.payment_success_url,
                cancel_url=settings.payment_cancel_url,
                customer_email=customer_email,
                client_reference_id=request_id,
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "unit_amount": amount,
                            "product_data": {"name": description},
                        },
                        "quantity": 1,
                    }
                ],
                payment_intent_data={"metadata": metadata},
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            raise ExternalServiceError(PAYMENT_ERROR_MESSAGE) from exc

        session_id = session.get("id")
        payment_url = session.get("url")
        if not session_id or not payment_url:
            raise ExternalServiceError(PAYMENT_ERROR_MESSAGE)
        return CheckoutSession(session_id=session_id, payment_url=payment_url)


def get_payment_gateway() -> PaymentGateway:
    return StripeCheckoutGateway()


def _description(request: AnyRequest) -> str:
    label = STRUCTURE_LABELS.get(request.kind, "Demande")
    subject = getattr(request, "structure_type", None) or getattr(request, "service_type", None)
    parts = [label]
    if subject:
        parts.append(str(subject).upper())
    if request.company_name:
        parts.append(request.company_name)
    return " - ".join(parts)


def initiate_payment(
    db: Session,
    *,
    request: AnyRequest,
    gateway: PaymentGateway,
    actor: CurrentUser,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[Payment, str]:
    """Open a checkout session for the request price and record the attempt.

    The request row is already committed. A gateway refusal is recorded as a
    failed attempt, committed, and re-raised as ExternalServiceError; the
    request itself stays ``pending``.
    """
    currency = get_settings().currency
    amount = request.estimated_price
    payment = Payment(
        request_id=request.id,
        request_type=request.kind,
        user_id=str(request.user_id),
        amount=amount,
        currency=currency,
        status=PaymentAttemptStatus.PENDING.value,
        provider="stripe",
    )

    try:
        checkout = gateway.initiate(
            amount=amount,
            currency=currency,
            description=_description(request),
            request_id=str(request.id),
            request_type=request.kind,
            customer_email=request.email,
        )
    except ExternalServiceError as exc:
        payment.status = PaymentAttemptStatus.FAILED.value
        payment.payment_meta = {"error": exc.message}
        db.add(payment)
        create_audit_log(
            db,
            entity_type=f"{request.kind}_request",
            entity_id=str(request.id),
            action="PAYMENT_INITIATION_FAILED",
            old_value=None,
            new_value={"amount": amount, "currency": currency},
            actor_type=actor.role,
            actor_id=actor.id,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"error": exc.message},
        )
        db.commit()
        logger.warning("Payment initiation failed request=%s: %s", request.id, exc.message)
        raise

    payment.transaction_id = checkout.session_id
    db.add(payment)
    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="PAYMENT_INITIATED",
        old_value=None,
        new_value={"amount": amount, "currency": currency, "session_id": checkout.session_id},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(payment)
    logger.info("Checkout session created request=%s session=%s", request.id, checkout.session_id)
    return payment, checkout.payment_url


def pay(
    db: Session,
    *,
    request: AnyRequest,
    session: Optional[CurrentUser],
    gateway: PaymentGateway,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> tuple[Payment, str]:
    """Deferred payment by the owner once a price is known."""
    actor = require_session(session)
    if str(request.user_id) != actor.id:
        raise NotFound("Demande introuvable")
    if request.payment_status == PaymentStatus.PAID.value:
        raise ValidationFailed("Cette demande est déjà payée")
    if request.estimated_price is None:
        raise ValidationFailed("Le devis de cette demande n'est pas encore établi")
    if request.status == RequestStatus.REJECTED.value:
        raise Conflict("Cette demande a été rejetée")
    return initiate_payment(
        db,
        request=request,
        gateway=gateway,
        actor=actor,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def sync_request_payment_status(request: AnyRequest) -> bool:
    if request.payment_status == PaymentStatus.PAID.value:
        return False
    request.payment_status = PaymentStatus.PAID.value
    return True


def _mark_paid(
    db: Session,
    *,
    payment: Payment,
    request: AnyRequest,
    actor_type: str,
    actor_id: Optional[str],
    payment_method: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    old_status = payment.status
    payment.status = PaymentAttemptStatus.PAID.value
    payment.paid_at = utcnow()
    if payment_method:
        payment.payment_method = payment_method
    if extra:
        payment.payment_meta = {**(payment.payment_meta or {}), **extra}
    synced = sync_request_payment_status(request)

    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="PAYMENT_CONFIRMED",
        old_value={"payment_status": old_status},
        new_value={
            "payment_status": payment.status,
            "amount": payment.amount,
            "request_payment_status_changed": synced,
        },
        actor_type=actor_type,
        actor_id=actor_id,
        ip_address=ip_address,
        user_agent=user_agent,
        metadata={"payment_id": str(payment.id), "payment_method": payment.payment_method},
    )


def _find_attempt(db: Session, transaction_id: str) -> Optional[Payment]:
    return db.execute(select(Payment).where(Payment.transaction_id == transaction_id)).scalar_one_or_none()


def confirm_checkout_session(db: Session, *, session_id: str, data_object: dict[str, Any]) -> bool:
    """Webhook: checkout session completed. Returns False when already applied."""

    payment = _find_attempt(db, session_id)
    if payment is None:
        raise NotFound("Paiement introuvable")
    if payment.status == PaymentAttemptStatus.PAID.value:
        return False

    request = get_request(db, payment.request_type, payment.request_id)
    _mark_paid(
        db,
        payment=payment,
        request=request,
        actor_type="SYSTEM_STRIPE",
        actor_id=None,
        payment_method="card",
        extra={"payment_intent": data_object.get("payment_intent")},
    )
    db.commit()
    return True


def fail_checkout_session(db: Session, *, session_id: str) -> bool:
    """Webhook: checkout session expired without payment."""

    payment = _find_attempt(db, session_id)
    if payment is None:
        raise NotFound("Paiement introuvable")
    if payment.status != PaymentAttemptStatus.PENDING.value:
        return False

    request = get_request(db, payment.request_type, payment.request_id)
    payment.status = PaymentAttemptStatus.FAILED.value
    create_audit_log(
        db,
        entity_type=f"{request.kind}_request",
        entity_id=str(request.id),
        action="PAYMENT_FAILED",
        old_value={"payment_status": PaymentAttemptStatus.PENDING.value},
        new_value={"payment_status": payment.status},
        actor_type="SYSTEM_STRIPE",
        actor_id=None,
        ip_address=None,
        user_agent=None,
        metadata={"payment_id": str(payment.id)},
    )
    db.commit()
    return True


def record_manual_payment(
    db: Session,
    *,
    request: AnyRequest,
    session: Optional[CurrentUser],
    payment_method: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Payment:
    """Admin confirms a cash or bank-transfer payment for the request price.

    The latest pending attempt is reused when there is one.
    """
    actor = require_role(session, ROLE_ADMIN)
    if request.payment_status == PaymentStatus.PAID.value:
        raise Conflict("Cette demande est déjà payée")
    if request.estimated_price is None:
        raise ValidationFailed("Fixez d'abord le devis de la demande", fields=["estimated_price"])

    payment = db.execute(
        select(Payment)
        .where(
            Payment.request_id == request.id,
            Payment.request_type == request.kind,
            Payment.status == PaymentAttemptStatus.PENDING.value,
        )
        .order_by(desc(Payment.created_at))
        .limit(1)
    ).scalar_one_or_none()
    if payment is None:
        payment = Payment(
            request_id=request.id,
            request_type=request.kind,
            user_id=str(request.user_id),
            amount=request.estimated_price,
            currency=get_settings().currency,
            status=PaymentAttemptStatus.PENDING.value,
            provider="manual",
        )
        db.add(payment)
        db.flush()

    _mark_paid(
        db,
        payment=payment,
        request=request,
        actor_type=actor.role,
        actor_id=actor.id,
        payment_method=payment_method,
        extra={"recorded_by": actor.id},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(payment)
    return payment
