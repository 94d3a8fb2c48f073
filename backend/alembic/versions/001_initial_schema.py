"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Quantity columns hold thousandths of a unit as integers (bakehouse.db.types.Quantity)
POSTS = (
    "MIXING", "LAMINATING", "SHAPING", "OVEN", "COLD_PREP",
    "PACKING", "BEVERAGE", "FILLING", "SMALL_STORE", "RECEIVING",
)
TRANSFER_STATUSES = ("PENDING", "APPROVED", "REJECTED", "COMPLETED")


def upgrade() -> None:
    # Stores table
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), unique=True, nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("warehouse_managers", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Ingredient catalog
    op.create_table(
        "ingredients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("specs", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean(), default=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Stock ledger: main warehouse per (store, ingredient)
    op.create_table(
        "store_inventory",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column(
            "ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column("main_qty", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("main_unit", sa.String(20), nullable=False, server_default=""),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("store_id", "ingredient_id", name="uq_store_inventory_store_ingredient"),
        sa.CheckConstraint("main_qty >= 0", name="ck_store_inventory_main_qty_non_negative"),
    )

    # Post buckets
    op.create_table(
        "post_stock",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "inventory_id", sa.Integer(), sa.ForeignKey("store_inventory.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("post", sa.Enum(*POSTS, name="post"), nullable=False),
        sa.Column("qty", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("unit", sa.String(20), nullable=False, server_default=""),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("inventory_id", "post", name="uq_post_stock_inventory_post"),
        sa.CheckConstraint("qty >= 0", name="ck_post_stock_qty_non_negative"),
    )

    # Audit trail of every stock change
    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column(
            "ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column("bucket", sa.String(30), nullable=False),
        sa.Column("qty_delta", sa.BigInteger(), nullable=False),
        sa.Column("qty_after", sa.BigInteger(), nullable=True),
        sa.Column("reason", sa.String(50), nullable=False),
        sa.Column("ref_type", sa.String(50), nullable=True),
        sa.Column("ref_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=True),
    )

    # Transfer requests
    op.create_table(
        "transfer_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("status", sa.Enum(*TRANSFER_STATUSES, name="transferstatus"), nullable=False, index=True),
        sa.Column("requested_by", sa.String(100), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("reviewed_by", sa.String(100), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "transfer_request_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "request_id", sa.Integer(), sa.ForeignKey("transfer_requests.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column(
            "ingredient_id", sa.Integer(), sa.ForeignKey("ingredients.id", ondelete="RESTRICT"),
            nullable=False, index=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_transfer_request_items_quantity_positive"),
    )

    # Store approval screen filters by store and status, newest first
    op.create_index(
        "ix_transfer_requests_store_status_created",
        "transfer_requests",
        ["store_id", "status", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_transfer_requests_store_status_created", table_name="transfer_requests")
    op.drop_table("transfer_request_items")
    op.drop_table("transfer_requests")
    op.drop_table("stock_movements")
    op.drop_table("post_stock")
    op.drop_table("store_inventory")
    op.drop_table("ingredients")
    op.drop_table("stores")
    sa.Enum(name="transferstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="post").drop(op.get_bind(), checkfirst=True)
