"""baseline schema

Revision ID: 4a9e2c1d7b30
Revises:
Create Date: 2026-10-19 09:12:41.204118

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from energy_console.database import Base
from energy_console import models  # noqa: F401

# revision identifiers, used by Alembic.
revision: str = "4a9e2c1d7b30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all database objects for the current metadata."""
    bind: Connection = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Drop all database objects managed by the metadata."""
    bind: Connection = op.get_bind()
    Base.metadata.drop_all(bind)
