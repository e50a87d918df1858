"""Bills and payment entries

Revision ID: 20260322_bill_payment_ledger
Revises: 20260315_stock_unit_pairs
Create Date: 2026-03-22
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260322_bill_payment_ledger"
down_revision = "20260315_stock_unit_pairs"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("remaining_cents", sa.Integer(), nullable=True),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_number", name="uq_bills_invoice_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bills_order_id", "bills", ["order_id"])
    op.create_index("ix_bills_customer_id", "bills", ["customer_id"])
    op.create_index("ix_bills_payment_status", "bills", ["payment_status"])

    op.create_table(
        "payment_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bill_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reference_number", sa.String(255), nullable=True),
        sa.Column("utr_number", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["bill_id"], ["bills.id"]),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_entries_bill_id", "payment_entries", ["bill_id"])
    op.create_index("ix_payment_entries_customer_id", "payment_entries", ["customer_id"])
    op.create_index("ix_payment_entries_bill_date", "payment_entries", ["bill_id", "payment_date"])

    # bill_id columns on units and pairs predate the bills table
    with op.batch_alter_table("stock_units", schema=None) as batch_op:
        batch_op.create_foreign_key("fk_stock_units_bill_id", "bills", ["bill_id"], ["id"])
    with op.batch_alter_table("stock_unit_pairs", schema=None) as batch_op:
        batch_op.create_foreign_key("fk_stock_unit_pairs_bill_id", "bills", ["bill_id"], ["id"])


def downgrade():
    with op.batch_alter_table("stock_unit_pairs", schema=None) as batch_op:
        batch_op.drop_constraint("fk_stock_unit_pairs_bill_id", type_="foreignkey")
    with op.batch_alter_table("stock_units", schema=None) as batch_op:
        batch_op.drop_constraint("fk_stock_units_bill_id", type_="foreignkey")
    op.drop_table("payment_entries")
    op.drop_table("bills")
