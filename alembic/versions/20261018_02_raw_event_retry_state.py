"""Track retry state on raw blockchain events

Revision ID: 20261018_02
Revises: 20261018_01
Create Date: 2026-10-18 16:00:00
"""
from alembic import op
import sqlalchemy as sa


revision = "20261018_02"
down_revision = "20261018_01"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("blockchain_events") as batch_op:
        batch_op.add_column(
            sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.false())
        )
        batch_op.add_column(
            sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0"))
        )
        batch_op.create_index(
            "idx_blockchain_events_retry", ["status", "retryable", "attempts"], unique=False
        )


def downgrade() -> None:
    with op.batch_alter_table("blockchain_events") as batch_op:
        batch_op.drop_index("idx_blockchain_events_retry")
        batch_op.drop_column("attempts")
        batch_op.drop_column("retryable")
