"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "dataset_relationships",
        sa.Column("dataset_key", sa.String(), primary_key=True),
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("dataset_id", sa.String(), nullable=False),
        sa.Column("edges_json", _JSON, nullable=False),
        sa.Column("table_names_json", _JSON, nullable=False),
        sa.Column("snapshot_fingerprint", sa.String(), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_dataset_relationships_project_dataset",
        "dataset_relationships",
        ["project_id", "dataset_id"],
    )

    op.create_table(
        "admin_roles",
        sa.Column("email", sa.String(), primary_key=True),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("assigned_projects_json", _JSON, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("admin_roles")
    op.drop_index("ix_dataset_relationships_project_dataset", table_name="dataset_relationships")
    op.drop_table("dataset_relationships")
