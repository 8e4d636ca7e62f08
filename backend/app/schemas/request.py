from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class RequestKind(str, Enum):
    COMPANY = "company"
    SERVICE = "service"


class RequestStatus(str, Enum):
    PENDING = "pending"
    PENDING_QUOTE = "pending_quote"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentAttemptStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PartyRole(str, Enum):
    ADMIN = "admin"
    CLIENT = "client"


class StructureType(str, Enum):
    EI = "ei"
    SARL = "sarl"
    SARLU = "sarlu"
    SAS = "sas"
    SASU = "sasu"
    FILIALE = "filiale"
    ONG = "ong"
    ASSOCIATION = "association"
    FONDATION = "fondation"
    SCOOPS = "scoops"
    SCI = "sci"
    GIE = "gie"


SINGLE_ASSOCIATE_STRUCTURES = frozenset({StructureType.EI, StructureType.SARLU, StructureType.SASU})


class AdditionalService(str, Enum):
    IMMOBILIER = "immobilier"
    VERIFICATION = "verification"
    ACD_AGREMENT = "acd_agrement"
    AGREMENT_FDFP = "agrement_fdfp"
    AGREMENT_AGENT_IMMOBILIER = "agrement_agent_immobilier"
    TRANSPORT = "transport"
    CARTE_TRANSPORTEUR = "carte_transporteur"


class ServiceType(str, Enum):
    DFE = "dfe"
    NCC = "ncc"
    CNPS = "cnps"
    IDU = "idu"
    NTD = "ntd"
    DOMICILIATION = "domiciliation"
    STRUCTURATION = "structuration"
    FORMATION = "formation"
    FINANCEMENT = "financement"
    DIGITALE = "digitale"
    IDENTITE = "identite"
    COMPTABILITE = "comptabilite"


class DocumentType(str, Enum):
    CNI_RECTO = "cni_recto"
    CNI_VERSO = "cni_verso"
    EXTRAIT_NAISSANCE = "extrait_naissance"
    CASIER_JUDICIAIRE = "casier_judiciaire"
    FILIATION = "filiation"
    CONTRAT_BAIL = "contrat_bail"
    STATUTS = "statuts"
    DSV = "dsv"
    AUTRE = "autre"


class AssociateOut(BaseModel):
    id: str
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    residence_address: Optional[str] = None
    profession: Optional[str] = None
    marital_status: Optional[str] = None
    marital_regime: Optional[str] = None
    id_number: Optional[str] = None
    cash_contribution: Optional[float] = None
    nature_contribution_value: Optional[float] = None
    nature_contribution_description: Optional[str] = None
    percentage: Optional[float] = None
    share_start: Optional[int] = None
    share_end: Optional[int] = None
    is_manager: bool = False
    is_unique_owner: bool = False


class _RequestOutBase(BaseModel):
    id: str
    tracking_number: Optional[str] = None
    user_id: str
    status: RequestStatus
    payment_status: PaymentStatus
    estimated_price: Optional[int] = None
    quote_required: bool
    currency: str
    contact_name: str
    phone: str
    email: str
    company_name: Optional[str] = None
    client_rating: Optional[int] = None
    client_review: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CompanyRequestOut(_RequestOutBase):
    kind: Literal["company"] = "company"
    structure_type: StructureType
    capital: Optional[str] = None
    activity: Optional[str] = None
    city: Optional[str] = None
    commune: Optional[str] = None
    neighborhood: Optional[str] = None
    address: Optional[str] = None
    additional_services: List[str] = Field(default_factory=list)


class ServiceRequestOut(_RequestOutBase):
    kind: Literal["service"] = "service"
    service_type: ServiceType
    service_details: Dict[str, Any] = Field(default_factory=dict)


RequestOut = Union[CompanyRequestOut, ServiceRequestOut]


class PaymentOut(BaseModel):
    id: str
    amount: int
    currency: str
    status: PaymentAttemptStatus
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AuditLogOut(BaseModel):
    id: str
    entity_type: str
    entity_id: str
    action: str
    old_value: Optional[Dict[str, Any]] = None
    new_value: Optional[Dict[str, Any]] = None
    actor_type: str
    actor_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class RequestDetail(BaseModel):
    request: RequestOut = Field(discriminator="kind")
    associates: List[AssociateOut] = Field(default_factory=list)
    payments: List[PaymentOut] = Field(default_factory=list)
    unread_messages: int = 0
    audit_logs: Optional[List[AuditLogOut]] = None


class RequestListResponse(BaseModel):
    items: List[RequestOut]
    total: int


class TransitionRequest(BaseModel):
    new_status: RequestStatus


class FeedbackRequest(BaseModel):
    # Range is enforced by the lifecycle service so a malformed value gets the domain error.
    rating: int
    review: Optional[str] = Field(default=None, max_length=2000)


class QuoteRequest(BaseModel):
    amount: int


class ManualPaymentRequest(BaseModel):
    payment_method: str = Field(default="cash", max_length=32)


class PaymentInitResponse(BaseModel):
    payment_id: str
    payment_url: str
    amount: int
    currency: str
