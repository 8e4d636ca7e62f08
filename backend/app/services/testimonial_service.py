from typing import Optional

from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from app.core.auth import ROLE_ADMIN, CurrentUser, require_role
from app.models.request import Testimonial
from app.schemas.admin import TestimonialIn
from app.services.errors import NotFound
from app.services.request_service import parse_uuid
from app.services.transition_service import create_audit_log


def submit_testimonial(
    db: Session,
    *,
    payload: TestimonialIn,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Testimonial:
    """Public submission. Hidden until an admin publishes it."""
    testimonial = Testimonial(
        founder_name=payload.founder_name.strip(),
        name=payload.name.strip(),
        type=payload.type.value,
        region=payload.region.strip(),
        district=(payload.district or "").strip() or None,
        testimonial=payload.testimonial.strip(),
        rating=payload.rating,
        website=(payload.website or "").strip() or None,
        show_publicly=False,
    )
    db.add(testimonial)
    db.flush()
    create_audit_log(
        db,
        entity_type="testimonial",
        entity_id=str(testimonial.id),
        action="TESTIMONIAL_SUBMITTED",
        old_value=None,
        new_value={"name": testimonial.name, "rating": testimonial.rating},
        actor_type="PUBLIC",
        actor_id=None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(testimonial)
    return testimonial


def list_public_testimonials(db: Session) -> list[Testimonial]:
    return (
        db.execute(
            select(Testimonial)
            .where(
                Testimonial.show_publicly.is_(True),
                Testimonial.testimonial.is_not(None),
                Testimonial.testimonial != "",
            )
            .order_by(desc(Testimonial.created_at))
        )
        .scalars()
        .all()
    )


def list_all_testimonials(db: Session, *, session: Optional[CurrentUser]) -> list[Testimonial]:
    require_role(session, ROLE_ADMIN)
    return db.execute(select(Testimonial).order_by(desc(Testimonial.created_at))).scalars().all()


def set_visibility(
    db: Session,
    *,
    testimonial_id: str,
    show_publicly: bool,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Testimonial:
    actor = require_role(session, ROLE_ADMIN)
    parsed = parse_uuid(testimonial_id)
    testimonial = db.get(Testimonial, parsed) if parsed else None
    if testimonial is None:
        raise NotFound("Témoignage introuvable")

    old = bool(testimonial.show_publicly)
    testimonial.show_publicly = show_publicly
    create_audit_log(
        db,
        entity_type="testimonial",
        entity_id=str(testimonial.id),
        action="TESTIMONIAL_VISIBILITY",
        old_value={"show_publicly": old},
        new_value={"show_publicly": show_publicly},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.commit()
    db.refresh(testimonial)
    return testimonial
