"""create recipe catalog tables

Revision ID: 3f2a9c1d7e54
Revises:
Create Date: 2026-03-02 09:41:12.318204

Base schema: templates, components, variants and prices. Tables that
already exist (created by Base.metadata.create_all()) are skipped.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e54'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(table_name):
    """Check if a table exists."""
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("recipe_templates"):
        op.create_table(
            "recipe_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("category", sa.String(), nullable=False),
            sa.Column("unit", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("default_params", sa.JSON(), nullable=True),
            sa.Column("axes", sa.JSON(), nullable=True),
            sa.Column("tags", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_recipe_templates_id", "recipe_templates", ["id"])
        op.create_index("ix_recipe_templates_key", "recipe_templates", ["key"], unique=True)

    if not _table_exists("recipe_components"):
        op.create_table(
            "recipe_components",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("ref_key", sa.String(), nullable=False),
            sa.Column("qty_formula", sa.Text(), nullable=False),
            sa.Column("mandatory", sa.Boolean(), nullable=False),
            sa.Column("risk_factor", sa.Float(), nullable=False),
            sa.Column("sort", sa.Integer(), nullable=False),
            sa.Column("note", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["recipe_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_recipe_components_id", "recipe_components", ["id"])
        op.create_index("ix_recipe_components_template_id", "recipe_components", ["template_id"])

    if not _table_exists("recipe_variants"):
        op.create_table(
            "recipe_variants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=False),
            sa.Column("key", sa.String(), nullable=False),
            sa.Column("unit", sa.String(), nullable=True),
            sa.Column("params", sa.JSON(), nullable=True),
            sa.Column("enabled", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["template_id"], ["recipe_templates.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_recipe_variants_id", "recipe_variants", ["id"])
        op.create_index("ix_recipe_variants_key", "recipe_variants", ["key"], unique=True)
        op.create_index("ix_recipe_variants_template_id", "recipe_variants", ["template_id"])

    if not _table_exists("price_items"):
        op.create_table(
            "price_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("ref_key", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("unit", sa.String(), nullable=True),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("valid_from", sa.Date(), nullable=False),
            sa.Column("valid_to", sa.Date(), nullable=True),
            sa.Column("note", sa.String(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("ref_key", "valid_from", name="uq_price_items_ref_key_valid_from"),
        )
        op.create_index("ix_price_items_id", "price_items", ["id"])
        op.create_index("ix_price_items_ref_key", "price_items", ["ref_key"])


def downgrade() -> None:
    for table in ["price_items", "recipe_variants", "recipe_components", "recipe_templates"]:
        if _table_exists(table):
            op.drop_table(table)
