"""create pms projects, tasks and task dependencies

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190002"
down_revision: str | None = "202610190001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "pms_project",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("legal_entity_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pms_project_legal_entity_id", "pms_project", ["legal_entity_id"], unique=False)

    op.create_table(
        "pms_task",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="todo"),
        sa.Column("priority", sa.String(length=32), nullable=False, server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["project_id"], ["pms_project.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pms_task_project_id", "pms_task", ["project_id"], unique=False)

    op.create_table(
        "pms_task_dependency",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("depends_on_task_id", sa.Uuid(), nullable=False),
        sa.Column("dependency_type", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["pms_task.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["depends_on_task_id"], ["pms_task.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "depends_on_task_id", name="uq_pms_task_dependency_pair"),
    )
    op.create_index("ix_pms_task_dependency_task_id", "pms_task_dependency", ["task_id"], unique=False)
    op.create_index(
        "ix_pms_task_dependency_depends_on_task_id",
        "pms_task_dependency",
        ["depends_on_task_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_pms_task_dependency_depends_on_task_id", table_name="pms_task_dependency")
    op.drop_index("ix_pms_task_dependency_task_id", table_name="pms_task_dependency")
    op.drop_table("pms_task_dependency")
    op.drop_index("ix_pms_task_project_id", table_name="pms_task")
    op.drop_table("pms_task")
    op.drop_index("ix_pms_project_legal_entity_id", table_name="pms_project")
    op.drop_table("pms_project")
