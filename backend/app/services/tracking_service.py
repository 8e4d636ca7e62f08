"""Tracking numbers and the unauthenticated status lookup.

Lookup is throttled per (phone, network address) with a persisted record:
attempts inside the window are counted with atomic UPDATEs so concurrent
requests cannot both slip under the threshold.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.dependencies import as_aware
from app.models.request import CompanyRequest, PublicTracking, PublicTrackingRateLimit, ServiceRequest
from app.schemas.request import RequestKind
from app.schemas.tracking import PublicStatusOut
from app.services.errors import NotFound, RateLimited
from app.services.transition_service import AnyRequest, create_audit_log

logger = logging.getLogger(__name__)

TRACKING_PREFIXES = {
    RequestKind.COMPANY.value: "CE",
    RequestKind.SERVICE.value: "SV",
}
# Crockford-style alphabet: no I, L, O, U to keep numbers readable over the phone.
_TRACKING_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_TRACKING_SUFFIX_LEN = 6
TRACKING_NUMBER_RE = re.compile(r"^(CE|SV)-\d{6}-[0-9A-HJKMNP-TV-Z]{6}$")
_MAX_GENERATION_ATTEMPTS = 5

NOT_FOUND_MESSAGE = "Aucune demande ne correspond à ces informations"
SYSTEM_ENTITY_ID = "00000000-0000-0000-0000-000000000000"
# Limiter key when the client address cannot be resolved; never written to INET columns.
UNKNOWN_CLIENT_IP = "unknown"


def generate_tracking_number(kind: str, *, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    prefix = TRACKING_PREFIXES[kind]
    suffix = "".join(secrets.choice(_TRACKING_ALPHABET) for _ in range(_TRACKING_SUFFIX_LEN))
    return f"{prefix}-{now:%y%m%d}-{suffix}"


def normalize_tracking_number(value: str) -> str:
    return (value or "").strip().upper()


def normalize_phone(value: str) -> str:
    """Digits only, without the international prefix for Côte d'Ivoire."""
    digits = re.sub(r"\D", "", value or "")
    if digits.startswith("00"):
        digits = digits[2:]
    if digits.startswith("225") and len(digits) == 13:
        digits = digits[3:]
    return digits


def assign_tracking_number(db: Session, request: AnyRequest) -> str:
    model = type(request)
    for _ in range(_MAX_GENERATION_ATTEMPTS):
        candidate = generate_tracking_number(request.kind)
        taken = db.execute(select(model.id).where(model.tracking_number == candidate)).first()
        if taken is None:
            request.tracking_number = candidate
            return candidate
    raise RuntimeError("Could not generate a unique tracking number")


def register_public_tracking(db: Session, request: AnyRequest) -> PublicTracking:
    entry = PublicTracking(
        phone=normalize_phone(request.phone),
        request_id=request.id,
        request_type=request.kind,
    )
    db.add(entry)
    return entry


# ─── Rate limit ────────────────────────────────────────


@dataclass(frozen=True)
class TrackingLimits:
    max_attempts: int
    window: timedelta
    cooldown: timedelta

    @classmethod
    def from_settings(cls) -> "TrackingLimits":
        settings = get_settings()
        return cls(
            max_attempts=max(1, settings.tracking_max_attempts),
            window=timedelta(minutes=max(1, settings.tracking_window_minutes)),
            cooldown=timedelta(minutes=max(1, settings.tracking_cooldown_minutes)),
        )


def _get_or_create_limit_row(db: Session, phone: str, ip_address: str) -> PublicTrackingRateLimit:
    stmt = select(PublicTrackingRateLimit).where(
        PublicTrackingRateLimit.phone == phone,
        PublicTrackingRateLimit.ip_address == ip_address,
    )
    row = db.execute(stmt).scalar_one_or_none()
    if row is not None:
        return row
    row = PublicTrackingRateLimit(phone=phone, ip_address=ip_address, attempt_count=0)
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        # A concurrent first attempt created it; nothing else is pending in this unit of work.
        db.rollback()
        row = db.execute(stmt).scalar_one()
    return row


def register_lookup_attempt(
    db: Session,
    *,
    phone: str,
    ip_address: str,
    limits: Optional[TrackingLimits] = None,
    now: Optional[datetime] = None,
) -> int:
    """Count one lookup attempt; raise RateLimited when the pair is blocked.

    Returns the attempt count inside the current window. The caller commits.
    """
    limits = limits or TrackingLimits.from_settings()
    now = now or datetime.now(timezone.utc)
    row = _get_or_create_limit_row(db, phone, ip_address)

    blocked_until = as_aware(row.blocked_until)
    if blocked_until is not None and blocked_until > now:
        raise RateLimited(
            "Trop de tentatives, réessayez plus tard",
            retry_after_seconds=int((blocked_until - now).total_seconds()) + 1,
        )

    table = PublicTrackingRateLimit
    window_start = now - limits.window
    # New window when the previous one is stale or a block has just elapsed.
    reset = db.execute(
        update(table)
        .where(
            table.id == row.id,
            or_(
                table.first_attempt_at.is_(None),
                table.first_attempt_at < window_start,
                and_(table.blocked_until.is_not(None), table.blocked_until <= now),
            ),
        )
        .values(attempt_count=1, first_attempt_at=now, last_attempt_at=now, blocked_until=None)
        .execution_options(synchronize_session=False)
    )
    if reset.rowcount == 0:
        db.execute(
            update(table)
            .where(table.id == row.id)
            .values(attempt_count=table.attempt_count + 1, last_attempt_at=now)
            .execution_options(synchronize_session=False)
        )
    db.refresh(row)

    if row.attempt_count > limits.max_attempts:
        row.blocked_until = now + limits.cooldown
        create_audit_log(
            db,
            entity_type="public_tracking",
            entity_id=SYSTEM_ENTITY_ID,
            action="TRACKING_RATE_LIMITED",
            old_value=None,
            new_value={"blocked_until": row.blocked_until.isoformat()},
            actor_type="PUBLIC",
            actor_id=None,
            ip_address=None if ip_address == UNKNOWN_CLIENT_IP else ip_address,
            user_agent=None,
            metadata={"attempts": row.attempt_count, "phone": phone},
        )
        db.commit()
        logger.warning("Public tracking blocked ip=%s attempts=%s", ip_address, row.attempt_count)
        raise RateLimited(
            "Trop de tentatives, réessayez plus tard",
            retry_after_seconds=int(limits.cooldown.total_seconds()),
        )
    return row.attempt_count


# ─── Lookup ────────────────────────────────────────────


def find_by_tracking_number(db: Session, tracking_number: str) -> Optional[AnyRequest]:
    number = normalize_tracking_number(tracking_number)
    if not TRACKING_NUMBER_RE.match(number):
        return None
    model = CompanyRequest if number.startswith("CE-") else ServiceRequest
    return db.execute(select(model).where(model.tracking_number == number)).scalar_one_or_none()


def _phone_matches(db: Session, request: AnyRequest, phone: str) -> bool:
    if not phone:
        return False
    if normalize_phone(request.phone) == phone:
        return True
    entry_id = db.execute(
        select(PublicTracking.id).where(
            PublicTracking.request_id == request.id,
            PublicTracking.request_type == request.kind,
            PublicTracking.phone == phone,
        )
    ).first()
    return entry_id is not None


def _label(request: AnyRequest) -> str:
    if isinstance(request, CompanyRequest):
        return request.structure_type
    return request.service_type


def lookup_public_status(
    db: Session,
    *,
    tracking_number: str,
    phone: str,
    ip_address: Optional[str],
    limits: Optional[TrackingLimits] = None,
    now: Optional[datetime] = None,
) -> PublicStatusOut:
    normalized_phone = normalize_phone(phone)
    register_lookup_attempt(
        db,
        phone=normalized_phone or "-",
        ip_address=ip_address or UNKNOWN_CLIENT_IP,
        limits=limits,
        now=now,
    )
    db.commit()

    request = find_by_tracking_number(db, tracking_number)
    # Same answer for unknown number and wrong phone, so numbers cannot be enumerated.
    if request is None or not _phone_matches(db, request, normalized_phone):
        raise NotFound(NOT_FOUND_MESSAGE)

    return PublicStatusOut(
        tracking_number=request.tracking_number,
        kind=RequestKind(request.kind),
        label=_label(request),
        status=request.status,
        created_at=request.created_at,
        updated_at=request.updated_at,
        closed_at=request.closed_at,
    )
