"""Create the roster table for role assignments."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_create_roster"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "roster",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subject_type", sa.String(length=255), nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("target_type", sa.String(length=255), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("role_key", sa.String(length=512), nullable=False),
        sa.Column("tenant_key", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "subject_type",
            "subject_id",
            "target_type",
            "target_id",
            "role_key",
            name="uq_roster_assignment",
        ),
    )
    op.create_index("ix_roster_subject", "roster", ["subject_type", "subject_id"])
    op.create_index("ix_roster_target", "roster", ["target_type", "target_id"])
    op.create_index("ix_roster_role_key", "roster", ["role_key"])
    op.create_index("ix_roster_tenant", "roster", ["tenant_key"])
    op.create_index(
        "ix_roster_tenant_subject", "roster", ["tenant_key", "subject_type", "subject_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_roster_tenant_subject", table_name="roster")
    op.drop_index("ix_roster_tenant", table_name="roster")
    op.drop_index("ix_roster_role_key", table_name="roster")
    op.drop_index("ix_roster_target", table_name="roster")
    op.drop_index("ix_roster_subject", table_name="roster")
    op.drop_table("roster")
