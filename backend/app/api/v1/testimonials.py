from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, require_roles
from app.core.dependencies import get_db
from app.models.request import Testimonial
from app.schemas.admin import (
    TestimonialIn,
    TestimonialListResponse,
    TestimonialOut,
    TestimonialVisibility,
)
from app.services import testimonial_service
from app.utils.rate_limit import get_client_ip, get_user_agent

router = APIRouter()


def _to_out(item: Testimonial) -> TestimonialOut:
    return TestimonialOut(
        id=str(item.id),
        founder_name=item.founder_name,
        name=item.name,
        type=item.type,
        region=item.region,
        district=item.district,
        testimonial=item.testimonial,
        rating=item.rating,
        website=item.website,
        show_publicly=bool(item.show_publicly),
        created_at=item.created_at,
    )


@router.get("/public/testimonials", response_model=TestimonialListResponse)
async def public_testimonials(db: Session = Depends(get_db)):
    items = testimonial_service.list_public_testimonials(db)
    return TestimonialListResponse(items=[_to_out(item) for item in items])


@router.post("/public/testimonials", response_model=TestimonialOut, status_code=201)
async def submit_testimonial(payload: TestimonialIn, request: Request, db: Session = Depends(get_db)):
    item = testimonial_service.submit_testimonial(
        db,
        payload=payload,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _to_out(item)


@router.get("/admin/testimonials", response_model=TestimonialListResponse)
async def admin_testimonials(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    items = testimonial_service.list_all_testimonials(db, session=current_user)
    return TestimonialListResponse(items=[_to_out(item) for item in items])


@router.patch("/admin/testimonials/{testimonial_id}", response_model=TestimonialOut)
async def admin_testimonial_visibility(
    testimonial_id: str,
    payload: TestimonialVisibility,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    item = testimonial_service.set_visibility(
        db,
        testimonial_id=testimonial_id,
        show_publicly=payload.show_publicly,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _to_out(item)
