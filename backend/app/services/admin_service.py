"""Site settings, the internal staff directory and contact-form messages."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.auth import ROLE_ADMIN, CurrentUser, require_role
from app.models.request import ContactMessage, InternalUser, SiteSetting
from app.schemas.admin import ContactMessageIn, StaffCreate, StaffUpdate
from app.services.errors import Conflict, NotFound, ValidationFailed
from app.services.request_service import parse_uuid
from app.services.transition_service import create_audit_log

logger = logging.getLogger(__name__)

SYSTEM_ENTITY_ID = "00000000-0000-0000-0000-000000000000"
PRICE_SETTING_KEYS = {"price_capital", "price_interior"}


def setting_category(key: str) -> str:
    if key.startswith("price_"):
        return "pricing"
    if key.startswith("contact_"):
        return "contact"
    return "general"


def _validate_setting(key: str, value: Any) -> None:
    if not key or len(key) > 64:
        raise ValidationFailed("Clé de paramètre invalide", fields=["key"])
    if key in PRICE_SETTING_KEYS:
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationFailed("Le tarif doit être un entier positif", fields=["value"])


def list_settings(db: Session, *, session: Optional[CurrentUser]) -> list[SiteSetting]:
    require_role(session, ROLE_ADMIN)
    return db.execute(select(SiteSetting).order_by(SiteSetting.key)).scalars().all()


def upsert_setting(
    db: Session,
    *,
    key: str,
    value: Any,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> SiteSetting:
    actor = require_role(session, ROLE_ADMIN)
    key = (key or "").strip()
    _validate_setting(key, value)

    setting = db.execute(select(SiteSetting).where(SiteSetting.key == key)).scalar_one_or_none()
    old_value = None
    if setting is None:
        setting = SiteSetting(key=key, value=value, category=setting_category(key), updated_by=actor.id)
        db.add(setting)
    else:
        old_value = {"value": setting.value}
        setting.value = value
        setting.category = setting_category(key)
        setting.updated_by = actor.id

    create_audit_log(
        db,
        entity_type="site_setting",
        entity_id=SYSTEM_ENTITY_ID,
        action="SETTINGS_UPDATED",
        old_value=old_value,
        new_value={"key": key, "value": value},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(setting)
    return setting


# ─── Staff ─────────────────────────────────────────────


def list_staff(db: Session, *, session: Optional[CurrentUser]) -> list[InternalUser]:
    require_role(session, ROLE_ADMIN)
    return db.execute(select(InternalUser).order_by(desc(InternalUser.created_at))).scalars().all()


def create_staff(
    db: Session,
    *,
    payload: StaffCreate,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> InternalUser:
    actor = require_role(session, ROLE_ADMIN)
    staff = InternalUser(
        user_id=payload.user_id.strip(),
        email=str(payload.email),
        full_name=payload.full_name.strip(),
        phone=payload.phone,
        role=payload.role.value,
        is_active=True,
    )
    db.add(staff)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Ce compte fait déjà partie de l'équipe") from exc

    create_audit_log(
        db,
        entity_type="internal_user",
        entity_id=str(staff.id),
        action="STAFF_CREATED",
        old_value=None,
        new_value={"user_id": staff.user_id, "role": staff.role, "email": staff.email},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(staff)
    return staff


def update_staff(
    db: Session,
    *,
    staff_id: str,
    payload: StaffUpdate,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> InternalUser:
    actor = require_role(session, ROLE_ADMIN)
    parsed = parse_uuid(staff_id)
    staff = db.get(InternalUser, parsed) if parsed else None
    if staff is None:
        raise NotFound("Membre de l'équipe introuvable")

    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        return staff
    old_value = {name: getattr(staff, name) for name in changes}
    if "role" in changes and changes["role"] is not None:
        staff.role = payload.role.value
    if "is_active" in changes and changes["is_active"] is not None:
        staff.is_active = payload.is_active
    if "full_name" in changes and changes["full_name"]:
        staff.full_name = payload.full_name.strip()
    if "phone" in changes:
        staff.phone = payload.phone

    create_audit_log(
        db,
        entity_type="internal_user",
        entity_id=str(staff.id),
        action="STAFF_UPDATED",
        old_value=old_value,
        new_value={name: getattr(staff, name) for name in changes},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(staff)
    return staff


# ─── Contact form ──────────────────────────────────────


def submit_contact_message(db: Session, *, payload: ContactMessageIn) -> ContactMessage:
    message = ContactMessage(
        name=payload.name.strip(),
        email=str(payload.email),
        phone=payload.phone.strip(),
        subject=(payload.subject or "").strip() or None,
        message=payload.message.strip(),
        status="new",
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    logger.info("Contact message received id=%s", message.id)
    return message


def list_contact_messages(db: Session, *, session: Optional[CurrentUser]) -> list[ContactMessage]:
    require_role(session, ROLE_ADMIN)
    return db.execute(select(ContactMessage).order_by(desc(ContactMessage.created_at))).scalars().all()
