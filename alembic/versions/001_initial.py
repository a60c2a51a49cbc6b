"""Station catalog

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

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
        "stations",
        sa.Column("id", sa.String(length=50), nullable=False),
        sa.Column("game_type", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="available"),
        sa.Column("maintenance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="2"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "time_slots",
        sa.Column("id", sa.String(length=50), nullable=False),
        sa.Column("start", sa.Time(), nullable=False),
        sa.Column("end", sa.Time(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Seed default venue
    op.execute(
        "INSERT INTO stations (id, game_type, name, status, maintenance, capacity) VALUES "
        "('pool-1', 'pool', 'Pool Table 1', 'available', false, 4), "
        "('pool-2', 'pool', 'Pool Table 2', 'available', false, 4), "
        "('pool-3', 'pool', 'Pool Table 3', 'available', false, 4), "
        "('pool-4', 'pool', 'Pool Table 4', 'available', false, 4), "
        "('snooker-1', 'snooker', 'Snooker Table', 'available', false, 2), "
        "('ps5-1', 'ps5', 'PS5 Console', 'available', false, 4)"
    )
    for i, hour in enumerate(range(14, 24), start=1):
        op.execute(
            f"INSERT INTO time_slots (id, start, \"end\") VALUES "
            f"('slot-{i}', '{hour:02d}:00:00', '{(hour + 1) % 24:02d}:00:00')"
        )


def downgrade() -> None:
    op.drop_table("time_slots")
    op.drop_table("stations")
