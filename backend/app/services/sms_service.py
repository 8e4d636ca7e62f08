import logging
import re

from sqlalchemy.orm import Session
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from app.core.config import get_settings
from app.services.tracking_service import normalize_phone
from app.services.transition_service import AnyRequest, create_audit_log

logger = logging.getLogger(__name__)

TRACKING_SMS_TEMPLATE = (
    "Votre demande a bien été enregistrée. Numéro de suivi : {tracking_number}. "
    "Conservez-le pour suivre l'avancement de votre dossier."
)


def _redact_phone(value: str) -> str:
    if not value:
        return ""
    tail = value[-3:] if len(value) >= 3 else value
    return f"***{tail}"


def to_e164(phone: str) -> str:
    """Twilio wants E.164; local numbers get the default country code."""
    raw = (phone or "").strip()
    digits = re.sub(r"\D", "", raw)
    if raw.startswith("+"):
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    return f"+{get_settings().sms_default_country_code}{normalize_phone(raw)}"


def send_sms(to_number: str, body: str) -> str:
    """Send an SMS via Twilio. Returns the message SID on success."""
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token or not settings.twilio_from_number:
        raise RuntimeError("Twilio n'est pas configuré")

    client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
    log_to = _redact_phone(to_number) if settings.pii_redaction_enabled else to_number
    try:
        message = client.messages.create(
            to=to_number,
            from_=settings.twilio_from_number,
            body=body,
        )
        logger.info("SMS sent to=%s sid=%s", log_to, message.sid)
        return message.sid
    except TwilioRestException:
        logger.exception("Twilio API error sending SMS to=%s", log_to)
        raise


def notify_tracking_number(db: Session, request: AnyRequest) -> bool:
    """Text the tracking number to the request contact. Never fails the caller.

    Outcome is audited and committed; returns True when the SMS left.
    """
    settings = get_settings()
    if not settings.enable_sms_notifications or not request.tracking_number:
        return False

    entity_type = f"{request.kind}_request"
    body = TRACKING_SMS_TEMPLATE.format(tracking_number=request.tracking_number)
    try:
        sid = send_sms(to_e164(request.phone), body)
    except Exception as exc:
        create_audit_log(
            db,
            entity_type=entity_type,
            entity_id=str(request.id),
            action="SMS_SEND_FAILED",
            old_value=None,
            new_value={"phone": request.phone},
            actor_type="SYSTEM_TWILIO",
            actor_id=None,
            ip_address=None,
            user_agent=None,
            metadata={"error": str(exc)},
        )
        db.commit()
        return False

    create_audit_log(
        db,
        entity_type=entity_type,
        entity_id=str(request.id),
        action="SMS_SENT",
        old_value=None,
        new_value={"phone": request.phone},
        actor_type="SYSTEM_TWILIO",
        actor_id=None,
        ip_address=None,
        user_agent=None,
        metadata={"sid": sid},
    )
    db.commit()
    return True
