"""add booking overlap exclusion constraint (PostgreSQL)

Active bookings of one business may not share any instant of
[start_time, end_time). Other backends rely on the write lock taken in
services.booking_workflow.create_booking (BEGIN IMMEDIATE on SQLite).

Revision ID: f2b3c4d5e6a7
Revises: e1a2b3c4d5f6
Create Date: 2026-10-05 00:10:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = 'f2b3c4d5e6a7'
down_revision = 'e1a2b3c4d5f6'
branch_labels = None
depends_on = None


def upgrade():
    if op.get_bind().dialect.name != 'postgresql':
        return

    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT booking_no_overlap
        EXCLUDE USING gist (
            business_id WITH =,
            tsrange(start_time, end_time, '[)') WITH &&
        )
        WHERE (status IN ('pending', 'confirmed'))
        """
    )


def downgrade():
    if op.get_bind().dialect.name != 'postgresql':
        return

    op.execute('ALTER TABLE bookings DROP CONSTRAINT IF EXISTS booking_no_overlap')
