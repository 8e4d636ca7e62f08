"""init formalis schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None

REQUEST_STATUSES = "'pending','pending_quote','in_progress','completed','rejected'"


def _id_column():
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _request_columns():
    return [
        _id_column(),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("tracking_number", sa.String(length=32), unique=True),
        sa.Column("contact_name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("company_name", sa.String(length=200)),
        sa.Column("estimated_price", sa.Integer()),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("client_rating", sa.SmallInteger()),
        sa.Column("client_review", sa.Text()),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("closed_by", sa.String(length=64)),
        _created_at(),
        _updated_at(),
    ]


def _request_constraints(name: str):
    return [
        sa.CheckConstraint(f"status IN ({REQUEST_STATUSES})", name=f"chk_{name}_status"),
        sa.CheckConstraint("payment_status IN ('pending','paid')", name=f"chk_{name}_payment_status"),
        sa.CheckConstraint("client_rating IS NULL OR (client_rating BETWEEN 1 AND 5)", name=f"chk_{name}_rating"),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "company_requests",
        *_request_columns(),
        sa.Column("structure_type", sa.String(length=32), nullable=False),
        sa.Column("sigle", sa.String(length=64)),
        sa.Column("capital", sa.String(length=64)),
        sa.Column("activity", sa.Text()),
        sa.Column("bank", sa.String(length=64)),
        sa.Column("city", sa.String(length=120)),
        sa.Column("commune", sa.String(length=120)),
        sa.Column("neighborhood", sa.String(length=120)),
        sa.Column("address", sa.Text()),
        sa.Column("postal_box", sa.String(length=64)),
        sa.Column("manager_mandate_duration", sa.String(length=64)),
        sa.Column("manager_residence", sa.Text()),
        sa.Column("manager_marital_status", sa.String(length=64)),
        sa.Column("manager_marital_regime", sa.String(length=64)),
        sa.Column(
            "additional_services",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("associates_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_request_constraints("company_requests"),
    )
    op.create_index("idx_company_requests_user", "company_requests", ["user_id"])
    op.create_index("idx_company_requests_status", "company_requests", ["status"])
    op.create_index("idx_company_requests_created", "company_requests", ["created_at"])

    op.create_table(
        "service_requests",
        *_request_columns(),
        sa.Column("service_type", sa.String(length=32), nullable=False),
        sa.Column(
            "service_details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_request_constraints("service_requests"),
    )
    op.create_index("idx_service_requests_user", "service_requests", ["user_id"])
    op.create_index("idx_service_requests_status", "service_requests", ["status"])

    op.create_table(
        "company_associates",
        _id_column(),
        sa.Column(
            "company_request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("company_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("email", sa.String(length=255)),
        sa.Column("residence_address", sa.Text()),
        sa.Column("profession", sa.String(length=120)),
        sa.Column("marital_status", sa.String(length=64)),
        sa.Column("marital_regime", sa.String(length=64)),
        sa.Column("birth_date", sa.String(length=32)),
        sa.Column("birth_place", sa.String(length=120)),
        sa.Column("id_number", sa.String(length=64)),
        sa.Column("id_recto_path", sa.Text()),
        sa.Column("id_verso_path", sa.Text()),
        sa.Column("cash_contribution", sa.Numeric(14, 2)),
        sa.Column("nature_contribution_value", sa.Numeric(14, 2)),
        sa.Column("nature_contribution_description", sa.Text()),
        sa.Column("total_contribution", sa.Numeric(14, 2)),
        sa.Column("percentage", sa.Numeric(5, 2)),
        sa.Column("number_of_shares", sa.Integer()),
        sa.Column("share_start", sa.Integer()),
        sa.Column("share_end", sa.Integer()),
        sa.Column("is_manager", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_unique_owner", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
    )
    op.create_index("idx_company_associates_request", "company_associates", ["company_request_id"])

    op.create_table(
        "request_documents_exchange",
        _id_column(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        sa.Column("document_name", sa.String(length=255), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("uploaded_by", sa.String(length=64), nullable=False),
        sa.Column("uploaded_by_role", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text()),
        _created_at(),
        sa.CheckConstraint("uploaded_by_role IN ('admin','client')", name="chk_request_document_role"),
    )
    op.create_index(
        "idx_request_documents_request",
        "request_documents_exchange",
        ["request_type", "request_id", "created_at"],
    )

    op.create_table(
        "request_messages",
        _id_column(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=False),
        sa.Column("sender_role", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.CheckConstraint("sender_role IN ('admin','client')", name="chk_request_message_role"),
    )
    op.create_index("idx_request_messages_request", "request_messages", ["request_type", "request_id", "created_at"])

    op.create_table(
        "payments",
        _id_column(),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False, server_default=sa.text("'XOF'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("provider", sa.String(length=32), nullable=False, server_default=sa.text("'stripe'")),
        sa.Column("transaction_id", sa.String(length=128)),
        sa.Column("payment_method", sa.String(length=32)),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("status IN ('pending','paid','failed')", name="chk_payment_status"),
        sa.UniqueConstraint("transaction_id", name="uq_payments_transaction_id"),
    )
    op.create_index("idx_payments_request", "payments", ["request_type", "request_id", "created_at"])

    op.create_table(
        "public_tracking",
        _id_column(),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("request_type", sa.String(length=16), nullable=False),
        _created_at(),
        sa.UniqueConstraint("request_type", "request_id", "phone", name="uq_public_tracking_entry"),
    )

    op.create_table(
        "public_tracking_rate_limit",
        _id_column(),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("blocked_until", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("phone", "ip_address", name="uq_tracking_rate_limit_key"),
    )

    op.create_table(
        "audit_logs",
        _id_column(),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("old_value", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("new_value", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=64)),
        sa.Column("ip_address", postgresql.INET()),
        sa.Column("user_agent", sa.Text()),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("idx_audit_timestamp", "audit_logs", ["timestamp"])

    op.create_table(
        "created_companies",
        _id_column(),
        sa.Column("founder_name", sa.String(length=200), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("region", sa.String(length=120), nullable=False),
        sa.Column("district", sa.String(length=120)),
        sa.Column("testimonial", sa.Text()),
        sa.Column("rating", sa.SmallInteger()),
        sa.Column("website", sa.String(length=255)),
        sa.Column("photo_url", sa.Text()),
        sa.Column("logo_url", sa.Text()),
        sa.Column("show_publicly", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="chk_testimonial_rating"),
    )

    op.create_table(
        "site_settings",
        _id_column(),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("value", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("category", sa.String(length=32)),
        sa.Column("updated_by", sa.String(length=64)),
        _updated_at(),
    )

    op.create_table(
        "internal_users",
        _id_column(),
        sa.Column("user_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "role IN ('admin','service_client','superviseur','comptable','controle_qualite')",
            name="chk_internal_user_role",
        ),
    )

    op.create_table(
        "contact_messages",
        _id_column(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("subject", sa.String(length=200)),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'new'")),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("contact_messages")
    op.drop_table("internal_users")
    op.drop_table("site_settings")
    op.drop_table("created_companies")
    op.drop_index("idx_audit_timestamp", table_name="audit_logs")
    op.drop_index("idx_audit_entity", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("public_tracking_rate_limit")
    op.drop_table("public_tracking")
    op.drop_index("idx_payments_request", table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_request_messages_request", table_name="request_messages")
    op.drop_table("request_messages")
    op.drop_index("idx_request_documents_request", table_name="request_documents_exchange")
    op.drop_table("request_documents_exchange")
    op.drop_index("idx_company_associates_request", table_name="company_associates")
    op.drop_table("company_associates")
    op.drop_index("idx_service_requests_status", table_name="service_requests")
    op.drop_index("idx_service_requests_user", table_name="service_requests")
    op.drop_table("service_requests")
    op.drop_index("idx_company_requests_created", table_name="company_requests")
    op.drop_index("idx_company_requests_status", table_name="company_requests")
    op.drop_index("idx_company_requests_user", table_name="company_requests")
    op.drop_table("company_requests")
