"""Admin console: dashboard, site settings, staff directory, contact inbox."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, require_roles
from app.core.dependencies import get_db
from app.models.request import ContactMessage, InternalUser, SiteSetting
from app.schemas.admin import (
    ContactMessageIn,
    ContactMessageListResponse,
    ContactMessageOut,
    DashboardStats,
    SiteSettingIn,
    SiteSettingListResponse,
    SiteSettingOut,
    StaffCreate,
    StaffListResponse,
    StaffOut,
    StaffUpdate,
)
from app.services import admin_service
from app.services.request_service import dashboard_stats
from app.utils.rate_limit import get_client_ip, get_user_agent

router = APIRouter()


def _setting_out(row: SiteSetting) -> SiteSettingOut:
    return SiteSettingOut(
        key=row.key,
        value=row.value,
        category=row.category or admin_service.setting_category(row.key),
        updated_by=row.updated_by,
        updated_at=row.updated_at,
    )


def _staff_out(row: InternalUser) -> StaffOut:
    return StaffOut(
        id=str(row.id),
        user_id=row.user_id,
        email=row.email,
        full_name=row.full_name,
        phone=row.phone,
        role=row.role,
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _contact_out(row: ContactMessage) -> ContactMessageOut:
    return ContactMessageOut(
        id=str(row.id),
        name=row.name,
        email=row.email,
        phone=row.phone,
        subject=row.subject,
        message=row.message,
        status=row.status,
        created_at=row.created_at,
    )


@router.get("/admin/dashboard", response_model=DashboardStats)
async def admin_dashboard(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    return dashboard_stats(db, session=current_user)


# ─── Settings ─────────────────────────────────────────


@router.get("/admin/settings", response_model=SiteSettingListResponse)
async def admin_list_settings(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    rows = admin_service.list_settings(db, session=current_user)
    return SiteSettingListResponse(items=[_setting_out(row) for row in rows])


@router.put("/admin/settings/{key}", response_model=SiteSettingOut)
async def admin_upsert_setting(
    key: str,
    payload: SiteSettingIn,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    row = admin_service.upsert_setting(
        db,
        key=key,
        value=payload.value,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _setting_out(row)


# ─── Staff ────────────────────────────────────────────


@router.get("/admin/staff", response_model=StaffListResponse)
async def admin_list_staff(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    rows = admin_service.list_staff(db, session=current_user)
    return StaffListResponse(items=[_staff_out(row) for row in rows])


@router.post("/admin/staff", response_model=StaffOut, status_code=201)
async def admin_create_staff(
    payload: StaffCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    row = admin_service.create_staff(
        db,
        payload=payload,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _staff_out(row)


@router.patch("/admin/staff/{staff_id}", response_model=StaffOut)
async def admin_update_staff(
    staff_id: str,
    payload: StaffUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    row = admin_service.update_staff(
        db,
        staff_id=staff_id,
        payload=payload,
        session=current_user,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _staff_out(row)


# ─── Contact ──────────────────────────────────────────


@router.post("/public/contact", response_model=ContactMessageOut, status_code=201)
async def submit_contact(payload: ContactMessageIn, db: Session = Depends(get_db)):
    return _contact_out(admin_service.submit_contact_message(db, payload=payload))


@router.get("/admin/contact-messages", response_model=ContactMessageListResponse)
async def admin_contact_messages(
    current_user: CurrentUser = Depends(require_roles("ADMIN")),
    db: Session = Depends(get_db),
):
    rows = admin_service.list_contact_messages(db, session=current_user)
    return ContactMessageListResponse(items=[_contact_out(row) for row in rows])
