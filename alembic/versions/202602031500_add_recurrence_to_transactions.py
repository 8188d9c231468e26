"""add recurrence to transactions

Revision ID: 202602031500
Revises: 202601100900
Create Date: 2026-02-03 15:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202602031500"
down_revision = "202601100900"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("transactions") as batch:
        batch.add_column(
            sa.Column(
                "is_recurring",
                sa.Boolean(),
                nullable=False,
                server_default=sa.false(),
            )
        )
        batch.add_column(
            sa.Column(
                "recurrence_type",
                sa.Enum("installments", "monthly", "yearly", name="recurrencetype"),
                nullable=True,
            )
        )
        batch.add_column(sa.Column("total_installments", sa.Integer(), nullable=True))
        batch.add_column(sa.Column("current_installment", sa.Integer(), nullable=True))
        batch.add_column(
            sa.Column("recurring_group_id", sa.String(length=32), nullable=True)
        )
        batch.create_check_constraint(
            "ck_transactions_installment_position",
            "current_installment IS NULL OR "
            "(current_installment >= 1 AND current_installment <= total_installments)",
        )
        batch.create_index("ix_transactions_group", ["recurring_group_id"])


def downgrade() -> None:
    with op.batch_alter_table("transactions") as batch:
        batch.drop_index("ix_transactions_group")
        batch.drop_constraint("ck_transactions_installment_position", type_="check")
        batch.drop_column("recurring_group_id")
        batch.drop_column("current_installment")
        batch.drop_column("total_installments")
        batch.drop_column("recurrence_type")
        batch.drop_column("is_recurring")
