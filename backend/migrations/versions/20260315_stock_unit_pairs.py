"""Paired stock units sold under one combined code

Revision ID: 20260315_stock_unit_pairs
Revises: 20260308_reservation_expiry
Create Date: 2026-03-15
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260315_stock_unit_pairs"
down_revision = "20260308_reservation_expiry"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "stock_unit_pairs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("combined_code", sa.String(64), nullable=False),
        sa.Column("primary_unit_id", sa.Integer(), nullable=False),
        sa.Column("secondary_unit_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="available"),
        sa.Column("reservation_key", sa.String(64), nullable=True),
        sa.Column("reservation_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bill_id", sa.Integer(), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("sold_to_customer_id", sa.Integer(), nullable=True),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["primary_unit_id"], ["stock_units.id"]),
        sa.ForeignKeyConstraint(["secondary_unit_id"], ["stock_units.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["sold_to_customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("combined_code", name="uq_stock_unit_pairs_combined_code"),
        sa.UniqueConstraint("primary_unit_id", name="uq_stock_unit_pairs_primary"),
        sa.UniqueConstraint("secondary_unit_id", name="uq_stock_unit_pairs_secondary"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_unit_pairs_status", "stock_unit_pairs", ["status"])
    op.create_index("ix_stock_unit_pairs_reservation_key", "stock_unit_pairs", ["reservation_key"])
    op.create_index("ix_stock_unit_pairs_bill_id", "stock_unit_pairs", ["bill_id"])
    op.create_index("ix_stock_unit_pairs_order_id", "stock_unit_pairs", ["order_id"])


def downgrade():
    op.drop_table("stock_unit_pairs")
