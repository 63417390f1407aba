"""Initial schema: providers, service requests and settlement transactions.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


SERVICE_TYPES = (
    "towing",
    "tire_change",
    "fuel_delivery",
    "battery_jump",
    "lockout_service",
    "emergency_assistance",
    "mechanic_fault",
    "electrical_fault",
)

SERVICE_STATUSES = (
    "pending",
    "assigned",
    "quoted",
    "awaiting_payment",
    "paid",
    "accepted",
    "denied",
    "en_route",
    "in_progress",
    "awaiting_confirmation",
    "completed",
    "cancelled",
)


def upgrade() -> None:
    # ── providers ─────────────────────────────────────────────────────
    op.create_table(
        "providers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(120), nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("is_available", sa.Boolean, default=True, nullable=False),
        sa.Column("is_active", sa.Boolean, default=True, nullable=False),
        sa.Column("service_types", sa.JSON, nullable=False),
        sa.Column("payout_recipient_code", sa.String(64), nullable=True),
        sa.Column("avg_rating", sa.Float, nullable=True),
        sa.Column("available_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_providers_cell", "providers", ["h3_cell"])
    op.create_index("idx_providers_available", "providers", ["is_available"])

    # ── service_requests ──────────────────────────────────────────────
    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tracking_code", sa.String(16), unique=True, nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=True),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column(
            "provider_id",
            sa.Integer,
            sa.ForeignKey("providers.id"),
            nullable=True,
        ),
        sa.Column(
            "service_type",
            sa.Enum(*SERVICE_TYPES, name="service_type"),
            nullable=False,
        ),
        sa.Column("location", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("customer_lat", sa.Float, nullable=True),
        sa.Column("customer_lng", sa.Float, nullable=True),
        sa.Column("provider_lat", sa.Float, nullable=True),
        sa.Column("provider_lng", sa.Float, nullable=True),
        sa.Column("quoted_amount", sa.Float, nullable=True),
        sa.Column("quote_description", sa.Text, nullable=True),
        sa.Column("amount", sa.Float, nullable=True),
        sa.Column(
            "payment_status",
            sa.Enum("unpaid", "pending", "paid", name="payment_status"),
            nullable=True,
        ),
        sa.Column("payment_reference", sa.String(64), nullable=True),
        sa.Column("provider_percentage", sa.Float, nullable=True),
        sa.Column(
            "status",
            sa.Enum(*SERVICE_STATUSES, name="service_status"),
            default="pending",
            nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by", sa.String(64), nullable=True),
        sa.Column("quoted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quote_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("customer_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "provider_confirmed_payment_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_requests_status", "service_requests", ["status"])
    op.create_index("idx_requests_provider", "service_requests", ["provider_id"])
    op.create_index("idx_requests_customer", "service_requests", ["customer_id"])
    op.create_index(
        "idx_requests_payment_reference", "service_requests", ["payment_reference"]
    )

    # ── transactions ──────────────────────────────────────────────────
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "service_request_id",
            sa.Integer,
            sa.ForeignKey("service_requests.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("provider_percentage", sa.Float, nullable=False),
        sa.Column("provider_amount", sa.Float, nullable=False),
        sa.Column("platform_amount", sa.Float, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "confirmed", name="transaction_status"),
            default="pending",
            nullable=False,
        ),
        sa.Column("transfer_code", sa.String(64), nullable=True),
        sa.Column(
            "transfer_status",
            sa.Enum("initiated", "success", "failed", name="transfer_status"),
            nullable=True,
        ),
        sa.Column("transfer_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transfer_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_transactions_transfer_code", "transactions", ["transfer_code"]
    )
    op.create_index(
        "idx_transactions_transfer_status", "transactions", ["transfer_status"]
    )


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("service_requests")
    op.drop_table("providers")
    op.execute("DROP TYPE IF EXISTS transfer_status")
    op.execute("DROP TYPE IF EXISTS transaction_status")
    op.execute("DROP TYPE IF EXISTS service_status")
    op.execute("DROP TYPE IF EXISTS payment_status")
    op.execute("DROP TYPE IF EXISTS service_type")
