"""create crm company

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_company",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("legal_entity_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=True),
        sa.Column("industry", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=True),
        sa.Column("country", sa.Text(), nullable=True),
        sa.Column("employee_count", sa.Integer(), nullable=True),
        sa.Column("annual_revenue", sa.Numeric(18, 2), nullable=True),
        sa.Column("company_type", sa.String(length=32), nullable=True),
        sa.Column("parent_company_id", sa.Uuid(), nullable=True),
        sa.Column("owner_user_id", sa.Uuid(), nullable=True),
        sa.Column("custom_properties", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["parent_company_id"], ["crm_company.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_company_parent_company_id", "crm_company", ["parent_company_id"], unique=False)
    op.create_index("ix_crm_company_legal_entity_id", "crm_company", ["legal_entity_id"], unique=False)
    op.create_index("ix_crm_company_domain", "crm_company", ["domain"], unique=False)
    op.create_index("ix_crm_company_deleted_at", "crm_company", ["deleted_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_company_deleted_at", table_name="crm_company")
    op.drop_index("ix_crm_company_domain", table_name="crm_company")
    op.drop_index("ix_crm_company_legal_entity_id", table_name="crm_company")
    op.drop_index("ix_crm_company_parent_company_id", table_name="crm_company")
    op.drop_table("crm_company")
