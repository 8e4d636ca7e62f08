import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import INET, JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base, declared_attr, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
INET_TYPE = String(45).with_variant(INET, "postgresql")

REQUEST_STATUSES = "'pending','pending_quote','in_progress','completed','rejected'"


def _uuid_pk():
    return Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class RequestLifecycleMixin:
    """Columns shared by both request kinds: ownership, commerce and lifecycle."""

    kind: str = ""

    id = _uuid_pk()
    user_id = Column(String(64), nullable=False, index=True)
    tracking_number = Column(String(32), unique=True)
    contact_name = Column(String(200), nullable=False)
    phone = Column(String(32), nullable=False)
    email = Column(String(255), nullable=False)
    company_name = Column(String(200))
    estimated_price = Column(Integer)
    payment_status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    status = Column(String(32), nullable=False, default="pending", server_default=text("'pending'"))
    client_rating = Column(SmallInteger)
    client_review = Column(Text)
    closed_at = Column(DateTime(timezone=True))
    closed_by = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @declared_attr
    def __table_args__(cls):
        name = cls.__tablename__
        return (
            CheckConstraint(f"status IN ({REQUEST_STATUSES})", name=f"chk_{name}_status"),
            CheckConstraint("payment_status IN ('pending','paid')", name=f"chk_{name}_payment_status"),
            CheckConstraint(
                "client_rating IS NULL OR (client_rating BETWEEN 1 AND 5)",
                name=f"chk_{name}_rating",
            ),
        )


class CompanyRequest(RequestLifecycleMixin, Base):
    __tablename__ = "company_requests"
    kind = "company"

    structure_type = Column(String(32), nullable=False)
    sigle = Column(String(64))
    capital = Column(String(64))
    activity = Column(Text)
    bank = Column(String(64))
    city = Column(String(120))
    commune = Column(String(120))
    neighborhood = Column(String(120))
    address = Column(Text)
    postal_box = Column(String(64))
    manager_mandate_duration = Column(String(64))
    manager_residence = Column(Text)
    manager_marital_status = Column(String(64))
    manager_marital_regime = Column(String(64))
    additional_services = Column(JSON_TYPE, nullable=False, default=list)
    associates_count = Column(Integer, nullable=False, default=0, server_default=text("0"))

    associates = relationship(
        "CompanyAssociate",
        back_populates="company_request",
        order_by="CompanyAssociate.created_at",
    )


class ServiceRequest(RequestLifecycleMixin, Base):
    __tablename__ = "service_requests"
    kind = "service"

    service_type = Column(String(32), nullable=False)
    service_details = Column(JSON_TYPE, nullable=False, default=dict)


class CompanyAssociate(Base):
    __tablename__ = "company_associates"

    id = _uuid_pk()
    company_request_id = Column(
        UUID_TYPE,
        ForeignKey("company_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_name = Column(String(200), nullable=False)
    phone = Column(String(32))
    email = Column(String(255))
    residence_address = Column(Text)
    profession = Column(String(120))
    marital_status = Column(String(64))
    marital_regime = Column(String(64))
    birth_date = Column(String(32))
    birth_place = Column(String(120))
    id_number = Column(String(64))
    id_recto_path = Column(Text)
    id_verso_path = Column(Text)
    cash_contribution = Column(Numeric(14, 2))
    nature_contribution_value = Column(Numeric(14, 2))
    nature_contribution_description = Column(Text)
    total_contribution = Column(Numeric(14, 2))
    percentage = Column(Numeric(5, 2))
    number_of_shares = Column(Integer)
    share_start = Column(Integer)
    share_end = Column(Integer)
    is_manager = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_unique_owner = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    company_request = relationship("CompanyRequest", back_populates="associates")


class RequestDocument(Base):
    __tablename__ = "request_documents_exchange"
    __table_args__ = (
        CheckConstraint("uploaded_by_role IN ('admin','client')", name="chk_request_document_role"),
        Index("idx_request_documents_request", "request_type", "request_id", "created_at"),
    )

    id = _uuid_pk()
    request_id = Column(UUID_TYPE, nullable=False)
    request_type = Column(String(16), nullable=False)
    document_name = Column(String(255), nullable=False)
    document_type = Column(String(32), nullable=False)
    file_path = Column(Text, nullable=False)
    uploaded_by = Column(String(64), nullable=False)
    uploaded_by_role = Column(String(16), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class RequestMessage(Base):
    __tablename__ = "request_messages"
    __table_args__ = (
        CheckConstraint("sender_role IN ('admin','client')", name="chk_request_message_role"),
        Index("idx_request_messages_request", "request_type", "request_id", "created_at"),
    )

    id = _uuid_pk()
    request_id = Column(UUID_TYPE, nullable=False)
    request_type = Column(String(16), nullable=False)
    sender_id = Column(String(64), nullable=False)
    sender_role = Column(String(16), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("status IN ('pending','paid','failed')", name="chk_payment_status"),
        UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
        Index("idx_payments_request", "request_type", "request_id", "created_at"),
    )

    id = _uuid_pk()
    request_id = Column(UUID_TYPE, nullable=False)
    request_type = Column(String(16), nullable=False)
    user_id = Column(String(64), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, default="XOF", server_default=text("'XOF'"))
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    provider = Column(String(32), nullable=False, default="stripe", server_default=text("'stripe'"))
    transaction_id = Column(String(128))
    payment_method = Column(String(32))
    payment_meta = Column("metadata", JSON_TYPE)
    paid_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class PublicTracking(Base):
    __tablename__ = "public_tracking"
    __table_args__ = (UniqueConstraint("request_type", "request_id", "phone", name="uq_public_tracking_entry"),)

    id = _uuid_pk()
    phone = Column(String(32), nullable=False)
    request_id = Column(UUID_TYPE, nullable=False)
    request_type = Column(String(16), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class PublicTrackingRateLimit(Base):
    __tablename__ = "public_tracking_rate_limit"
    __table_args__ = (UniqueConstraint("phone", "ip_address", name="uq_tracking_rate_limit_key"),)

    id = _uuid_pk()
    phone = Column(String(32), nullable=False)
    ip_address = Column(String(64), nullable=False)
    attempt_count = Column(Integer, nullable=False, default=0, server_default=text("0"))
    first_attempt_at = Column(DateTime(timezone=True))
    last_attempt_at = Column(DateTime(timezone=True))
    blocked_until = Column(DateTime(timezone=True))


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = _uuid_pk()
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(UUID_TYPE, nullable=False, index=True)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(64))
    ip_address = Column(INET_TYPE)
    user_agent = Column(Text)
    audit_meta = Column("metadata", JSON_TYPE, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Testimonial(Base):
    __tablename__ = "created_companies"
    __table_args__ = (CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="chk_testimonial_rating"),)

    id = _uuid_pk()
    founder_name = Column(String(200), nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(String(32), nullable=False)
    region = Column(String(120), nullable=False)
    district = Column(String(120))
    testimonial = Column(Text)
    rating = Column(SmallInteger)
    website = Column(String(255))
    photo_url = Column(Text)
    logo_url = Column(Text)
    show_publicly = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class SiteSetting(Base):
    __tablename__ = "site_settings"

    id = _uuid_pk()
    key = Column(String(64), nullable=False, unique=True)
    value = Column(JSON_TYPE, nullable=False)
    category = Column(String(32))
    updated_by = Column(String(64))
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class InternalUser(Base):
    __tablename__ = "internal_users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('admin','service_client','superviseur','comptable','controle_qualite')",
            name="chk_internal_user_role",
        ),
    )

    id = _uuid_pk()
    user_id = Column(String(64), nullable=False, unique=True)
    email = Column(String(255), nullable=False)
    full_name = Column(String(200), nullable=False)
    phone = Column(String(32))
    role = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ContactMessage(Base):
    __tablename__ = "contact_messages"

    id = _uuid_pk()
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    subject = Column(String(200))
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="new", server_default=text("'new'"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
