from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.dependencies import get_db
from app.schemas.tracking import PublicStatusOut, TrackingLookupRequest
from app.services.tracking_service import lookup_public_status
from app.utils.rate_limit import get_client_ip

router = APIRouter()


@router.post("/public/tracking", response_model=PublicStatusOut)
async def public_tracking_lookup(
    payload: TrackingLookupRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    """Unauthenticated status lookup by tracking number and phone."""
    return lookup_public_status(
        db,
        tracking_number=payload.tracking_number,
        phone=payload.phone,
        ip_address=get_client_ip(request),
    )
