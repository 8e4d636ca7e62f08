import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.dependencies import get_db
from app.services.errors import NotFound
from app.services.payment_service import confirm_checkout_session, fail_checkout_session

logger = logging.getLogger(__name__)

router = APIRouter()

HANDLED_EVENTS = {"checkout.session.completed", "checkout.session.expired"}


@router.post("/webhook/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    settings = get_settings()
    if not settings.enable_stripe:
        raise HTTPException(404, "Introuvable")
    sig_header = request.headers.get("stripe-signature")
    if settings.allow_insecure_webhooks and not sig_header:
        return {"received": True}
    if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
        if settings.allow_insecure_webhooks:
            return {"received": True}
        raise HTTPException(500, "Stripe non configuré")

    stripe.api_key = settings.stripe_secret_key
    payload = await request.body()

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)
    except ValueError as exc:
        raise HTTPException(400, "Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise HTTPException(400, "Invalid signature") from exc

    event_type = event.get("type")
    if event_type not in HANDLED_EVENTS:
        return {"received": True}

    data_object = event.get("data", {}).get("object", {}) or {}
    session_id = data_object.get("id")
    if not session_id:
        raise HTTPException(400, "Missing session id")

    try:
        if event_type == "checkout.session.completed":
            if data_object.get("payment_status") not in (None, "paid"):
                # Asynchronous methods confirm later through another event.
                return {"received": True}
            applied = confirm_checkout_session(db, session_id=session_id, data_object=data_object)
        else:
            applied = fail_checkout_session(db, session_id=session_id)
    except NotFound:
        logger.warning("Stripe event for unknown checkout session=%s type=%s", session_id, event_type)
        return {"received": True}

    logger.info("Stripe event processed type=%s session=%s applied=%s", event_type, session_id, applied)
    return {"received": True}
