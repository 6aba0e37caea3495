"""Seed the built-in content shortcodes

Revision ID: b3f07e5a9c12
Revises: 4a9e2c1d7b30
Create Date: 2026-10-19 09:40:03.551902

"""
import uuid
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "b3f07e5a9c12"
down_revision: Union[str, Sequence[str], None] = "4a9e2c1d7b30"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SHORTCODES = [
    ("customer.name", "Customer full name", "Matti Meikäläinen", "customer"),
    ("customer.email", "Customer email address", "matti@example.com", "customer"),
    ("customer.phone", "Customer phone number", "+358 40 123 4567", "customer"),
    ("results.annual_savings_formatted", "Annual energy savings", "1 200 €", "results"),
    ("results.payback_period", "Payback period in years", "3.5", "results"),
    ("results.co2_reduction", "CO2 reduction kg/year", "2400", "results"),
    ("company.name", "Company name", "Energiaykkönen Oy", "company"),
    ("company.url", "Company website", "https://example.fi", "company"),
    ("system.base_url", "Calculator address", "https://laskuri.example.fi", "system"),
]

shortcodes = sa.table(
    "shortcodes",
    sa.column("id", sa.String),
    sa.column("name", sa.String),
    sa.column("description", sa.Text),
    sa.column("example", sa.Text),
    sa.column("category", sa.String),
    sa.column("replacement_value", sa.Text),
    sa.column("is_active", sa.Boolean),
)


def upgrade() -> None:
    bind = op.get_bind()
    existing = {row[0] for row in bind.execute(sa.text("SELECT name FROM shortcodes"))}
    rows = [
        {
            "id": str(uuid.uuid4()),
            "name": name,
            "description": description,
            "example": example,
            "category": category,
            "replacement_value": "",
            "is_active": True,
        }
        for name, description, example, category in SHORTCODES
        if name not in existing
    ]
    if rows:
        op.bulk_insert(shortcodes, rows)


def downgrade() -> None:
    names = [name for name, *_ in SHORTCODES]
    op.execute(shortcodes.delete().where(shortcodes.c.name.in_(names)))
