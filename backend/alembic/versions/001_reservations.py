"""Reservations, per-service snapshots and provider booking locks

Revision ID: 001
Revises:
Create Date: (run alembic upgrade head)

Catalog tables (users, companies, company_services) are owned by the
catalog service and are expected to exist already.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("provider_id", sa.Integer(), sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False),
        sa.Column("requester_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "primary_service_id",
            sa.Integer(),
            sa.ForeignKey("company_services.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("instant", sa.DateTime(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("is_manual_block", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("total_duration_minutes", sa.Integer(), nullable=True),
        sa.Column("total_price_min", sa.Float(), nullable=True),
        sa.Column("total_price_max", sa.Float(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reservations_provider_instant", "reservations", ["provider_id", "instant"])
    op.create_index("ix_reservations_requester_status", "reservations", ["requester_id", "status"])

    op.create_table(
        "reservation_services",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "reservation_id",
            sa.Integer(),
            sa.ForeignKey("reservations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "service_id",
            sa.Integer(),
            sa.ForeignKey("company_services.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("service_name", sa.Text(), nullable=False),
        sa.Column("price_min", sa.Float(), nullable=True),
        sa.Column("price_max", sa.Float(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_reservation_services_reservation_id", "reservation_services", ["reservation_id"])

    op.create_table(
        "provider_booking_locks",
        sa.Column(
            "provider_id",
            sa.Integer(),
            sa.ForeignKey("companies.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
    )


def downgrade() -> None:
    op.drop_table("provider_booking_locks")
    op.drop_index("ix_reservation_services_reservation_id", table_name="reservation_services")
    op.drop_table("reservation_services")
    op.drop_index("ix_reservations_requester_status", table_name="reservations")
    op.drop_index("ix_reservations_provider_instant", table_name="reservations")
    op.drop_table("reservations")
