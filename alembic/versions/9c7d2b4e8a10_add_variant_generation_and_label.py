"""add variant generation and label

Revision ID: 9c7d2b4e8a10
Revises: 3f2a9c1d7e54
Create Date: 2026-03-09 14:05:47.902311

Regeneration bumps a generation counter on the template and stamps it on
every variant of the new set. Adds missing columns idempotently.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '9c7d2b4e8a10'
down_revision: Union[str, None] = '3f2a9c1d7e54'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _column_exists(table_name, column_name):
    """Check if a column already exists in the table."""
    bind = op.get_bind()
    insp = inspect(bind)
    columns = [c["name"] for c in insp.get_columns(table_name)]
    return column_name in columns


def upgrade() -> None:
    if not _column_exists("recipe_templates", "generation"):
        op.add_column(
            "recipe_templates",
            sa.Column("generation", sa.Integer(), nullable=False, server_default="0"),
        )
    if not _column_exists("recipe_variants", "generation"):
        op.add_column(
            "recipe_variants",
            sa.Column("generation", sa.Integer(), nullable=False, server_default="0"),
        )
    if not _column_exists("recipe_variants", "label"):
        op.add_column("recipe_variants", sa.Column("label", sa.String(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("recipe_variants") as batch_op:
        if _column_exists("recipe_variants", "label"):
            batch_op.drop_column("label")
        if _column_exists("recipe_variants", "generation"):
            batch_op.drop_column("generation")
    with op.batch_alter_table("recipe_templates") as batch_op:
        if _column_exists("recipe_templates", "generation"):
            batch_op.drop_column("generation")
