"""charges

Revision ID: 0003_charges
Revises: 0002_normalize_status
Create Date: 2026-10-20

"""

from alembic import op
import sqlalchemy as sa

revision = "0003_charges"
down_revision = "0002_normalize_status"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "charges",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("client_ref", sa.String(length=120), nullable=False),
        sa.Column("customer_id", sa.String(length=128), nullable=False),
        sa.Column("shop_id", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_charges_client_ref", "charges", ["client_ref"], unique=True)
    op.create_index("ix_charges_customer_id", "charges", ["customer_id"])


def downgrade() -> None:
    op.drop_table("charges")
