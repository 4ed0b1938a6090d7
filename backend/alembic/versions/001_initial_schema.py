"""Initial schema: sessions, credentials, order COGS and tracked shipments.

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    existing = set(sa.inspect(conn).get_table_names())

    if "sessions" not in existing:
        # Normally created by the storefront OAuth collaborator
        op.create_table(
            "sessions",
            sa.Column("id", sa.String(255), nullable=False),
            sa.Column("shop", sa.String(255), nullable=False),
            sa.Column("state", sa.String(255), nullable=False, server_default=""),
            sa.Column("is_online", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("scope", sa.Text(), nullable=True),
            sa.Column("expires", sa.DateTime(), nullable=True),
            sa.Column("access_token", sa.Text(), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sessions_shop", "sessions", ["shop"])

    op.create_table(
        "credentials",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("api_key", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop", "provider", name="uq_credentials_shop_provider"),
    )

    op.create_table(
        "order_cogs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop", sa.String(255), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("order_name", sa.String(255), nullable=False),
        sa.Column("total_revenue", sa.Float(), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False),
        sa.Column("profit", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("computed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shop", "order_id", name="uq_order_cogs_shop_order"),
    )
    op.create_index("ix_order_cogs_shop_created", "order_cogs", ["shop", "created_at"])

    op.create_table(
        "order_cogs_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_cogs_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=True),
        sa.Column("variant_id", sa.String(64), nullable=True),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Float(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False),
        sa.Column("total_revenue", sa.Float(), nullable=False),
        sa.Column("profit", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["order_cogs_id"], ["order_cogs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_cogs_items_order_cogs_id", "order_cogs_items", ["order_cogs_id"])

    op.create_table(
        "tracked_shipments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop", sa.String(255), nullable=False),
        sa.Column("tracking", sa.String(64), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tracking"),
    )
    op.create_index("ix_tracked_shipments_shop_created", "tracked_shipments", ["shop", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_tracked_shipments_shop_created", table_name="tracked_shipments")
    op.drop_table("tracked_shipments")
    op.drop_index("ix_order_cogs_items_order_cogs_id", table_name="order_cogs_items")
    op.drop_table("order_cogs_items")
    op.drop_index("ix_order_cogs_shop_created", table_name="order_cogs")
    op.drop_table("order_cogs")
    op.drop_table("credentials")
