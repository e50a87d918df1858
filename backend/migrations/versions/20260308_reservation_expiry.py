"""Add reservation expiry timestamp to stock units

Deployments that have not run this revision keep working; reservations
there simply never expire on their own.

Revision ID: 20260308_reservation_expiry
Revises: 20260301_unit_inventory
Create Date: 2026-03-08
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20260308_reservation_expiry"
down_revision = "20260301_unit_inventory"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("stock_units", schema=None) as batch_op:
        batch_op.add_column(sa.Column("reservation_expires_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.create_index("ix_stock_units_reservation_expires_at", ["reservation_expires_at"])


def downgrade():
    with op.batch_alter_table("stock_units", schema=None) as batch_op:
        batch_op.drop_index("ix_stock_units_reservation_expires_at")
        batch_op.drop_column("reservation_expires_at")
