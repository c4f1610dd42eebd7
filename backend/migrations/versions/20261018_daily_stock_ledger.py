"""Daily stock ledger, reconciliation runs and upstream feed tables

Revision ID: 20261018_daily_stock_ledger
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_daily_stock_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def upgrade():
    # Catalog and live inventory
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False, server_default="cylinder"),
        sa.Column("cylinder_size", sa.String(length=16), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_category_active", "products", ["category", "is_active"], unique=False)

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("available_full", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_empty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id"),
        sqlite_autoincrement=True,
    )

    # Upstream feeds
    op.create_table(
        "daily_sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("cylinder_name", sa.String(length=255), nullable=True),
        sa.Column("cylinder_status", sa.String(length=16), nullable=True),
        sa.Column("gas_sales_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("full_cylinder_sales_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("empty_cylinder_sales_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cylinder_refills_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transfer_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("received_back_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_daily_sales_date", "daily_sales", ["date"], unique=False)
    op.create_index("ix_daily_sales_date_product", "daily_sales", ["date", "product_name"], unique=False)

    op.create_table(
        "daily_refills",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("cylinder_name", sa.String(length=255), nullable=False),
        sa.Column("today_refill", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_daily_refills_date", "daily_refills", ["date"], unique=False)
    op.create_index("ix_daily_refills_date_cylinder", "daily_refills", ["date", "cylinder_name"], unique=False)

    op.create_table(
        "cylinder_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="cleared"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cylinder_transactions_type", "cylinder_transactions", ["type"], unique=False)
    op.create_index("ix_cylinder_tx_occurred", "cylinder_transactions", ["occurred_at"], unique=False)

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("cylinder_name", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=16), nullable=False),
        sa.Column("cylinder_state", sa.String(length=16), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("direction", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="assigned"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transfers_status", "stock_transfers", ["status"], unique=False)
    op.create_index("ix_stock_transfers_assigned", "stock_transfers", ["assigned_at"], unique=False)
    op.create_index("ix_stock_transfers_accepted", "stock_transfers", ["accepted_at"], unique=False)

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=16), nullable=False, server_default="cylinder"),
        sa.Column("cylinder_status", sa.String(length=16), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchase_orders_date", "purchase_orders", ["purchase_date"], unique=False)

    # Ledger
    op.create_table(
        "daily_stock_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("product_key", sa.String(length=255), nullable=False),
        sa.Column("product_display_name", sa.String(length=255), nullable=False),
        sa.Column("opening_full", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("opening_empty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("opening_source", sa.String(length=16), nullable=True),
        sa.Column("empty_purchase", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("full_purchase", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refilled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("full_cylinder_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("empty_cylinder_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gas_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deposits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("returns", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transfer_gas", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transfer_empty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("received_gas", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("received_empty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closing_full", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("closing_empty", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_partial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("last_recomputed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_date", "product_key", name="uq_dsr_date_product"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_daily_stock_records_business_date", "daily_stock_records", ["business_date"], unique=False)
    op.create_index("ix_dsr_product_date", "daily_stock_records", ["product_key", "business_date"], unique=False)

    op.create_table(
        "reconciliation_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trigger", sa.String(length=16), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="running"),
        sa.Column("is_partial", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("warnings", sa.JSON(), nullable=False),
        sa.Column("records_written", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("cutoff_key", sa.String(length=32), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cutoff_key", name="uq_recon_runs_cutoff_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_reconciliation_runs_status", "reconciliation_runs", ["status"], unique=False)
    op.create_index("ix_recon_runs_date_trigger", "reconciliation_runs", ["business_date", "trigger"], unique=False)


def downgrade():
    op.drop_index("ix_recon_runs_date_trigger", table_name="reconciliation_runs")
    op.drop_index("ix_reconciliation_runs_status", table_name="reconciliation_runs")
    op.drop_table("reconciliation_runs")

    op.drop_index("ix_dsr_product_date", table_name="daily_stock_records")
    op.drop_index("ix_daily_stock_records_business_date", table_name="daily_stock_records")
    op.drop_table("daily_stock_records")

    op.drop_index("ix_purchase_orders_date", table_name="purchase_orders")
    op.drop_table("purchase_orders")

    op.drop_index("ix_stock_transfers_accepted", table_name="stock_transfers")
    op.drop_index("ix_stock_transfers_assigned", table_name="stock_transfers")
    op.drop_index("ix_stock_transfers_status", table_name="stock_transfers")
    op.drop_table("stock_transfers")

    op.drop_index("ix_cylinder_tx_occurred", table_name="cylinder_transactions")
    op.drop_index("ix_cylinder_transactions_type", table_name="cylinder_transactions")
    op.drop_table("cylinder_transactions")

    op.drop_index("ix_daily_refills_date_cylinder", table_name="daily_refills")
    op.drop_index("ix_daily_refills_date", table_name="daily_refills")
    op.drop_table("daily_refills")

    op.drop_index("ix_daily_sales_date_product", table_name="daily_sales")
    op.drop_index("ix_daily_sales_date", table_name="daily_sales")
    op.drop_table("daily_sales")

    op.drop_table("inventory_items")

    op.drop_index("ix_products_category_active", table_name="products")
    op.drop_table("products")
