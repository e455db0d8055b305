"""Create projects and labels tables

Revision ID: 001
Revises: None
Create Date: 2024-03-01 00:00:00.000000+00:00

What:  Creates `projects` and `labels`.
How:   PostgreSQL UUID keys, JSONB canvas content, TIMESTAMP WITH TIME ZONE.

Constraints that the label core relies on:
    - uq_labels_project_name: a label name is unique within its project
    - labels.project_id → projects.id ON DELETE CASCADE
    - labels.version NOT NULL DEFAULT 1 (optimistic concurrency token)

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("user_id", sa.String(64), nullable=False, comment="Owner"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_projects_user_id", "projects", ["user_id"])

    op.create_table(
        "labels",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "name",
            sa.String(100),
            nullable=False,
            comment="Unique within the owning project",
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("width", sa.Float(), nullable=False, server_default=sa.text("100")),
        sa.Column("height", sa.Float(), nullable=False, server_default=sa.text("50")),
        sa.Column(
            "content",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text(
                """'{"version": "6.0.0", "objects": [], "background": "#ffffff"}'::jsonb"""
            ),
            comment="Opaque canvas document",
        ),
        sa.Column(
            "thumbnail_ref",
            sa.String(255),
            nullable=True,
            comment="Deterministic storage path of the md thumbnail",
        ),
        sa.Column(
            "version",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("1"),
            comment="Optimistic concurrency token",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("project_id", "name", name="uq_labels_project_name"),
    )
    op.create_index("idx_labels_project_created", "labels", ["project_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_labels_project_created", table_name="labels")
    op.drop_table("labels")
    op.drop_index("idx_projects_user_id", table_name="projects")
    op.drop_table("projects")
