"""manual and bulk irrigation entries in the actuation log

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 15:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0002"
down_revision: Union[str, Sequence[str], None] = "20261018_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("actuation_logs", sa.Column("relay_id", sa.String(length=64), nullable=True))
    op.alter_column(
        "actuation_logs",
        "measured_value",
        existing_type=sa.Float(),
        nullable=True,
    )
    op.create_check_constraint(
        "ck_actuation_logs_action",
        "actuation_logs",
        "action IN ('start','stop')",
    )


def downgrade() -> None:
    op.drop_constraint("ck_actuation_logs_action", "actuation_logs", type_="check")
    op.execute("DELETE FROM actuation_logs WHERE measured_value IS NULL")
    op.alter_column(
        "actuation_logs",
        "measured_value",
        existing_type=sa.Float(),
        nullable=False,
    )
    op.drop_column("actuation_logs", "relay_id")
