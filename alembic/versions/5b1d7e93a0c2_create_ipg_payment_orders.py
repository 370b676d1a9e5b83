"""create ipg_payment_orders

Revision ID: 5b1d7e93a0c2
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "5b1d7e93a0c2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ipg_payment_orders",
        sa.Column("id", sa.String(length=50), nullable=False),
        sa.Column("track_id", sa.String(length=255), nullable=False),
        sa.Column("payment_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("currency_code", sa.String(length=3), nullable=False),
        sa.Column("language", sa.String(length=3), nullable=False),
        sa.Column("response_url", sa.Text(), nullable=False),
        sa.Column("error_url", sa.Text(), nullable=False),
        sa.Column("return_url", sa.Text(), nullable=False),
        sa.Column("buyer", sa.JSON(), nullable=False),
        sa.Column("udf", sa.JSON(), nullable=False),
        sa.Column("diagnostics", sa.JSON(), nullable=False),
        sa.Column("acknowledgement", sa.JSON(none_as_null=True), nullable=True),
        sa.Column("awaiting_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_ipg_payment_orders_track_id"),
        "ipg_payment_orders",
        ["track_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_ipg_payment_orders_payment_id"),
        "ipg_payment_orders",
        ["payment_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_ipg_payment_orders_status"),
        "ipg_payment_orders",
        ["status"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(
        op.f("ix_ipg_payment_orders_status"),
        table_name="ipg_payment_orders",
    )
    op.drop_index(
        op.f("ix_ipg_payment_orders_payment_id"),
        table_name="ipg_payment_orders",
    )
    op.drop_index(
        op.f("ix_ipg_payment_orders_track_id"),
        table_name="ipg_payment_orders",
    )
    op.drop_table("ipg_payment_orders")
