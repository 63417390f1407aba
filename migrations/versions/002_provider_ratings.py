"""Customer ratings left when confirming a completed service.

Revision ID: 002
Revises: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ratings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "service_request_id",
            sa.Integer,
            sa.ForeignKey("service_requests.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column(
            "provider_id",
            sa.Integer,
            sa.ForeignKey("providers.id"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("review", sa.Text, nullable=True),
        sa.Column("featured", sa.Boolean, default=False, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_range"),
    )
    op.create_index("idx_ratings_provider", "ratings", ["provider_id"])


def downgrade() -> None:
    op.drop_index("idx_ratings_provider", table_name="ratings")
    op.drop_table("ratings")
