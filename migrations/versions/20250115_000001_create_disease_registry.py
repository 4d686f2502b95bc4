"""create disease registry and fact table mapping

Revision ID: 20250115_000001
Revises: 
Create Date: 2025-01-15 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "20250115_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "diseases",
        sa.Column("code", sa.String(length=10), primary_key=True, nullable=False),
        sa.Column("name_th", sa.String(length=255), nullable=False),
        sa.Column("name_en", sa.String(length=255), nullable=True),
    )

    op.create_table(
        "disease_fact_tables",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("disease_code", sa.String(length=10), nullable=False),
        sa.Column("table_name", sa.String(length=63), nullable=False),
        sa.Column("schema_name", sa.String(length=63), nullable=False, server_default="public"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(
            ["disease_code"],
            ["diseases.code"],
            ondelete="RESTRICT",
            onupdate="CASCADE",
        ),
        sa.UniqueConstraint("disease_code", name="uq_disease_fact_tables_disease_code"),
    )


def downgrade() -> None:
    op.drop_table("disease_fact_tables")
    op.drop_table("diseases")
