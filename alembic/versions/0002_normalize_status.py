"""normalize legacy status strings

Rows imported from the document store carry variants such as "Cancelled" or
"approved". Map them onto the canonical values; anything unrecognised is left
for manual review and makes the upgrade fail.

Revision ID: 0002_normalize_status
Revises: 0001_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0002_normalize_status"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

STATUS_MAP = {
    "approved": "confirmed",
    "canceled": "cancelled",
}
CANONICAL = ("payment_held", "confirmed", "rejected", "failed", "cancelled")
PAYMENT_CANONICAL = ("success", "refunded", "abandoned", "failed")


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(sa.text("UPDATE bookings SET status = LOWER(TRIM(status))"))
    conn.execute(sa.text("UPDATE bookings SET payment_status = LOWER(TRIM(payment_status))"))
    for old, new in STATUS_MAP.items():
        conn.execute(sa.text("UPDATE bookings SET status = :new WHERE status = :old"), {"old": old, "new": new})
    conn.execute(sa.text("UPDATE booking_events SET status = LOWER(TRIM(status))"))
    for old, new in STATUS_MAP.items():
        conn.execute(sa.text("UPDATE booking_events SET status = :new WHERE status = :old"), {"old": old, "new": new})

    bad = conn.execute(
        sa.text("SELECT COUNT(*) FROM bookings WHERE status NOT IN :ok OR payment_status NOT IN :pok").bindparams(
            sa.bindparam("ok", expanding=True), sa.bindparam("pok", expanding=True)
        ),
        {"ok": list(CANONICAL), "pok": list(PAYMENT_CANONICAL)},
    ).scalar()
    if bad:
        raise RuntimeError(f"{bad} booking(s) have unrecognised status values; fix them before upgrading")


def downgrade() -> None:
    # The original spellings are not kept.
    pass
