"""add form_schemas for the visual form builder

Revision ID: d81c4f6a2e07
Revises: b3f07e5a9c12
Create Date: 2026-10-20 08:21:47.310554

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "d81c4f6a2e07"
down_revision: Union[str, Sequence[str], None] = "b3f07e5a9c12"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # the baseline builds from current metadata, so fresh databases already have it
    if op.get_bind().dialect.has_table(op.get_bind(), "form_schemas"):
        return
    op.create_table(
        "form_schemas",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("schema_data", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_form_schemas_name", "form_schemas", ["name"])
    op.create_index("ix_form_schemas_is_active", "form_schemas", ["is_active"])


def downgrade() -> None:
    if op.get_bind().dialect.has_table(op.get_bind(), "form_schemas"):
        op.drop_index("ix_form_schemas_is_active", table_name="form_schemas")
        op.drop_index("ix_form_schemas_name", table_name="form_schemas")
        op.drop_table("form_schemas")
