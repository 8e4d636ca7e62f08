"""Company wizard and request submission.

The wizard is an explicit state object: the current step plus the data bags of
every step. ``missing_fields`` / ``can_advance`` and ``compute_price`` are pure
and take no session or database.

Submission writes the request, its associates, the public tracking entry and
the audit row in one transaction. Payment is opened only after that commit, so
a gateway failure leaves a complete ``pending`` request the owner can pay
later.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser, require_session
from app.core.config import get_settings
from app.models.request import CompanyAssociate, CompanyRequest, ServiceRequest, SiteSetting
from app.schemas.intake import (
    AssociateIn,
    CompanySubmissionResponse,
    CompanyWizardData,
    ServiceRequestCreate,
    ServiceSubmissionResponse,
)
from app.schemas.request import (
    SINGLE_ASSOCIATE_STRUCTURES,
    PaymentStatus,
    RequestStatus,
    StructureType,
)
from app.services.errors import ExternalServiceError, ValidationFailed
from app.services.payment_service import PaymentGateway, initiate_payment
from app.services.request_service import request_to_out
from app.services.sms_service import notify_tracking_number
from app.services.tracking_service import assign_tracking_number, register_public_tracking
from app.services.transition_service import AnyRequest, create_audit_log

logger = logging.getLogger(__name__)

QUOTE_MESSAGE = "Votre demande a été enregistrée. Un conseiller vous transmettra un devis."
PAYMENT_MESSAGE = "Votre demande a été enregistrée. Vous allez être redirigé vers le paiement."
PAYMENT_RETRY_MESSAGE = "Votre demande a été enregistrée mais le paiement n'a pas pu être initié."
SERVICE_MESSAGE = "Votre demande de service a été enregistrée. Un conseiller vous transmettra un devis."


class WizardStep(IntEnum):
    IDENTIFICATION = 1
    LOCATION = 2
    MANAGER = 3
    ASSOCIATES = 4
    ADDITIONAL_SERVICES = 5
    SUMMARY = 6


FIRST_STEP = WizardStep.IDENTIFICATION
LAST_STEP = WizardStep.SUMMARY


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_single_associate(structure_type: Optional[StructureType]) -> bool:
    return structure_type in SINGLE_ASSOCIATE_STRUCTURES


def missing_fields(step: int, data: CompanyWizardData) -> list[str]:
    """Required fields of ``step`` that are still empty. Steps 5 and 6 have no gate."""
    step = WizardStep(step)
    missing: list[str] = []
    if step == WizardStep.IDENTIFICATION:
        ident = data.identification
        if ident.structure_type is None:
            missing.append("identification.structure_type")
        if _blank(ident.company_name):
            missing.append("identification.company_name")
        if _blank(ident.capital):
            missing.append("identification.capital")
    elif step == WizardStep.LOCATION:
        loc = data.location
        for name in ("city", "commune", "neighborhood"):
            if _blank(getattr(loc, name)):
                missing.append(f"location.{name}")
    elif step == WizardStep.MANAGER:
        manager = data.manager
        for name in ("full_name", "phone", "email"):
            if _blank(getattr(manager, name)):
                missing.append(f"manager.{name}")
    elif step == WizardStep.ASSOCIATES:
        first = data.associates[0] if data.associates else None
        if first is None or _blank(first.full_name):
            missing.append("associates.0.full_name")
        if first is None or _blank(first.phone):
            missing.append("associates.0.phone")
    return missing


def can_advance(step: int, data: CompanyWizardData) -> bool:
    return not missing_fields(step, data)


@dataclass
class WizardSession:
    """Finite-state wizard: the client may not move past a step whose gate fails."""

    data: CompanyWizardData = field(default_factory=CompanyWizardData)
    step: WizardStep = FIRST_STEP

    @property
    def single_associate(self) -> bool:
        return is_single_associate(self.data.identification.structure_type)

    def advance(self) -> WizardStep:
        missing = missing_fields(self.step, self.data)
        if missing:
            raise ValidationFailed("Complétez les champs obligatoires de cette étape", fields=missing)
        if self.step == WizardStep.IDENTIFICATION and self.single_associate:
            # Sole-owner structures keep exactly one associate entry.
            self.data.associates = self.data.associates[:1] or [AssociateIn()]
        if self.step < LAST_STEP:
            self.step = WizardStep(self.step + 1)
        return self.step

    def back(self) -> WizardStep:
        if self.step > FIRST_STEP:
            self.step = WizardStep(self.step - 1)
        return self.step

    def add_associate(self, associate: Optional[AssociateIn] = None) -> int:
        if self.single_associate:
            raise ValidationFailed(
                "Cette forme juridique n'admet qu'un seul associé",
                fields=["associates"],
            )
        self.data.associates.append(associate or AssociateIn())
        return len(self.data.associates)

    def remove_associate(self, index: int) -> int:
        if len(self.data.associates) <= 1:
            raise ValidationFailed("Au moins un associé est requis", fields=["associates"])
        del self.data.associates[index]
        return len(self.data.associates)


# ─── Pricing ───────────────────────────────────────────


@dataclass(frozen=True)
class Tariffs:
    capital_city_name: str
    capital: int
    interior: int
    currency: str


def compute_price(city: Optional[str], additional_services: Iterable[Any], tariffs: Tariffs) -> Optional[int]:
    """Capital or interior tariff; ``None`` means a quote is required."""
    if list(additional_services or []):
        return None
    needle = (tariffs.capital_city_name or "").strip().lower()
    if needle and needle in (city or "").lower():
        return tariffs.capital
    return tariffs.interior


def _setting_amount(value: Any) -> Optional[int]:
    if isinstance(value, dict):
        value = value.get("amount")
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        return int(digits) if digits and int(digits) > 0 else None
    return None


def load_tariffs(db: Optional[Session] = None) -> Tariffs:
    """Environment defaults, overridden by the ``price_capital`` / ``price_interior`` site settings."""
    settings = get_settings()
    capital = settings.capital_tariff
    interior = settings.interior_tariff
    if db is not None:
        rows = db.execute(
            select(SiteSetting).where(SiteSetting.key.in_(("price_capital", "price_interior")))
        ).scalars()
        for row in rows:
            amount = _setting_amount(row.value)
            if amount is None:
                logger.warning("Ignoring invalid pricing setting key=%s", row.key)
                continue
            if row.key == "price_capital":
                capital = amount
            else:
                interior = amount
    return Tariffs(
        capital_city_name=settings.capital_city_name,
        capital=capital,
        interior=interior,
        currency=settings.currency,
    )


# ─── Submission ────────────────────────────────────────


def _named_associates(data: CompanyWizardData) -> list[AssociateIn]:
    return [a for a in data.associates if not _blank(a.full_name)]


def contribution_warnings(data: CompanyWizardData) -> list[str]:
    """Data-quality checks on associate stakes. Reported, never enforced."""
    associates = _named_associates(data)
    if len(associates) < 2:
        return []
    warnings = []
    percentages = [a.percentage for a in associates if a.percentage is not None]
    if percentages and abs(sum(percentages) - 100) > 0.01:
        warnings.append(f"percentages sum to {sum(percentages):g}")
    capital_digits = "".join(ch for ch in data.identification.capital if ch.isdigit())
    contributions = [
        (a.cash_contribution or 0) + (a.nature_contribution_value or 0)
        for a in associates
        if a.cash_contribution is not None or a.nature_contribution_value is not None
    ]
    if capital_digits and contributions and abs(sum(contributions) - int(capital_digits)) > 0.01:
        warnings.append(f"contributions sum to {sum(contributions):g} for capital {capital_digits}")
    return warnings


def _validate_company(data: CompanyWizardData) -> list[AssociateIn]:
    missing: list[str] = []
    for step in (WizardStep.IDENTIFICATION, WizardStep.LOCATION, WizardStep.MANAGER, WizardStep.ASSOCIATES):
        missing.extend(missing_fields(step, data))
    if missing:
        raise ValidationFailed("Des champs obligatoires sont manquants", fields=missing)

    associates = _named_associates(data)
    if is_single_associate(data.identification.structure_type) and len(associates) != 1:
        raise ValidationFailed(
            "Cette forme juridique n'admet qu'un seul associé",
            fields=["associates"],
        )
    return associates


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _build_associate(request: CompanyRequest, associate: AssociateIn, *, unique_owner: bool) -> CompanyAssociate:
    total = None
    if associate.cash_contribution is not None or associate.nature_contribution_value is not None:
        total = (associate.cash_contribution or 0) + (associate.nature_contribution_value or 0)
    number_of_shares = None
    if associate.share_start and associate.share_end and associate.share_end >= associate.share_start:
        number_of_shares = associate.share_end - associate.share_start + 1
    return CompanyAssociate(
        company_request_id=request.id,
        full_name=associate.full_name.strip(),
        phone=_blank_to_none(associate.phone),
        email=_blank_to_none(associate.email),
        residence_address=_blank_to_none(associate.residence_address),
        profession=_blank_to_none(associate.profession),
        marital_status=_blank_to_none(associate.marital_status),
        marital_regime=_blank_to_none(associate.marital_regime),
        id_number=_blank_to_none(associate.id_number),
        cash_contribution=associate.cash_contribution,
        nature_contribution_value=associate.nature_contribution_value,
        nature_contribution_description=_blank_to_none(associate.nature_contribution_description),
        total_contribution=total,
        percentage=100 if unique_owner else associate.percentage,
        number_of_shares=number_of_shares,
        share_start=associate.share_start,
        share_end=associate.share_end,
        is_manager=associate.is_manager,
        is_unique_owner=unique_owner,
    )


def _write_new_request(db: Session, request: AnyRequest, *, commit: bool) -> None:
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Request insert failed kind=%s", request.kind)
        raise ExternalServiceError("Enregistrement de la demande impossible, réessayez") from exc
    if commit:
        db.refresh(request)


def submit_company_request(
    db: Session,
    *,
    data: CompanyWizardData,
    session: Optional[CurrentUser],
    gateway: PaymentGateway,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> CompanySubmissionResponse:
    actor = require_session(session)
    associates = _validate_company(data)
    for warning in contribution_warnings(data):
        logger.warning("Associate contributions look inconsistent: %s", warning)

    ident = data.identification
    loc = data.location
    manager = data.manager
    services = [s.value for s in data.additional_services]
    price = compute_price(loc.city, services, load_tariffs(db))
    single = is_single_associate(ident.structure_type)

    request = CompanyRequest(
        user_id=actor.id,
        contact_name=manager.full_name.strip(),
        phone=manager.phone.strip(),
        email=manager.email.strip(),
        company_name=ident.company_name.strip(),
        structure_type=ident.structure_type.value,
        sigle=_blank_to_none(ident.sigle),
        capital=ident.capital.strip(),
        activity=_blank_to_none(ident.activities),
        bank=_blank_to_none(ident.bank),
        city=loc.city.strip(),
        commune=loc.commune.strip(),
        neighborhood=loc.neighborhood.strip(),
        address=_blank_to_none(loc.reference),
        postal_box=_blank_to_none(loc.postal_box),
        manager_mandate_duration=_blank_to_none(manager.mandate_duration),
        manager_residence=_blank_to_none(manager.residence),
        manager_marital_status=_blank_to_none(manager.marital_status),
        manager_marital_regime=_blank_to_none(manager.marital_regime),
        additional_services=services,
        associates_count=len(associates),
        estimated_price=price,
        status=RequestStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
    )
    assign_tracking_number(db, request)
    db.add(request)
    _write_new_request(db, request, commit=False)

    for associate in associates:
        db.add(_build_associate(request, associate, unique_owner=single))
    register_public_tracking(db, request)
    create_audit_log(
        db,
        entity_type="company_request",
        entity_id=str(request.id),
        action="REQUEST_CREATED",
        old_value=None,
        new_value={
            "structure_type": request.structure_type,
            "estimated_price": price,
            "additional_services": services,
            "tracking_number": request.tracking_number,
        },
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    for associate in associates:
        create_audit_log(
            db,
            entity_type="company_request",
            entity_id=str(request.id),
            action="ASSOCIATE_ADDED",
            old_value=None,
            new_value={"full_name": associate.full_name.strip(), "is_unique_owner": single},
            actor_type=actor.role,
            actor_id=actor.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    _write_new_request(db, request, commit=True)
    logger.info("Company request created id=%s tracking=%s", request.id, request.tracking_number)

    notify_tracking_number(db, request)

    if price is None:
        return CompanySubmissionResponse(
            request=request_to_out(request),
            quote_required=True,
            message=QUOTE_MESSAGE,
        )

    try:
        _, payment_url = initiate_payment(
            db,
            request=request,
            gateway=gateway,
            actor=actor,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except ExternalServiceError as exc:
        db.refresh(request)
        return CompanySubmissionResponse(
            request=request_to_out(request),
            quote_required=False,
            payment_error=exc.message,
            message=PAYMENT_RETRY_MESSAGE,
        )

    return CompanySubmissionResponse(
        request=request_to_out(request),
        quote_required=False,
        payment_url=payment_url,
        message=PAYMENT_MESSAGE,
    )


def submit_service_request(
    db: Session,
    *,
    payload: ServiceRequestCreate,
    session: Optional[CurrentUser],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ServiceSubmissionResponse:
    """Service requests have no fixed price: they wait in ``pending_quote``."""
    actor = require_session(session)
    contact_name = payload.contact_name.strip()
    phone = payload.phone.strip()
    missing = [name for name, value in (("contact_name", contact_name), ("phone", phone)) if not value]
    if missing:
        raise ValidationFailed("Des champs obligatoires sont manquants", fields=missing)

    request = ServiceRequest(
        user_id=actor.id,
        contact_name=contact_name,
        phone=phone,
        email=str(payload.email),
        company_name=_blank_to_none(payload.company_name),
        service_type=payload.service_type.value,
        service_details=payload.service_details,
        estimated_price=None,
        status=RequestStatus.PENDING_QUOTE.value,
        payment_status=PaymentStatus.PENDING.value,
    )
    assign_tracking_number(db, request)
    db.add(request)
    _write_new_request(db, request, commit=False)
    register_public_tracking(db, request)
    create_audit_log(
        db,
        entity_type="service_request",
        entity_id=str(request.id),
        action="REQUEST_CREATED",
        old_value=None,
        new_value={"service_type": request.service_type, "tracking_number": request.tracking_number},
        actor_type=actor.role,
        actor_id=actor.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    _write_new_request(db, request, commit=True)
    logger.info("Service request created id=%s tracking=%s", request.id, request.tracking_number)

    notify_tracking_number(db, request)
    return ServiceSubmissionResponse(request=request_to_out(request), message=SERVICE_MESSAGE)
