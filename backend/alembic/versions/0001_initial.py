"""initial schema: masp_rates and crawler_state

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "masp_rates",
        sa.Column("token", sa.String(length=256), nullable=False),
        sa.Column("max_reward_rate", sa.Text(), nullable=False),
        sa.Column("kp_gain", sa.Text(), nullable=False),
        sa.Column("kd_gain", sa.Text(), nullable=False),
        sa.Column("locked_amount_target", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("token"),
    )
    op.create_table(
        "crawler_state",
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("last_processed_epoch", sa.BigInteger(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("name"),
    )


def downgrade() -> None:
    op.drop_table("crawler_state")
    op.drop_table("masp_rates")
