"""Per-holder daily stock ledgers

Revision ID: 20261101_holder_ledgers
Revises: 20261018_daily_stock_ledger
Create Date: 2026-11-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261101_holder_ledgers"
down_revision = "20261018_daily_stock_ledger"
branch_labels = None
depends_on = None

FEED_TABLES = (
    "daily_sales",
    "daily_refills",
    "cylinder_transactions",
    "stock_transfers",
    "purchase_orders",
)


def upgrade():
    for table in FEED_TABLES:
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.add_column(sa.Column("holder_id", sa.String(length=64), nullable=True))
            batch_op.create_index(f"ix_{table}_holder_id", ["holder_id"], unique=False)

    # Existing rows are the warehouse ledger
    with op.batch_alter_table("daily_stock_records", schema=None) as batch_op:
        batch_op.add_column(sa.Column("holder_key", sa.String(length=64), nullable=False, server_default=""))
        batch_op.drop_constraint("uq_dsr_date_product", type_="unique")
        batch_op.create_unique_constraint(
            "uq_dsr_date_holder_product", ["business_date", "holder_key", "product_key"]
        )
        batch_op.create_index(
            "ix_dsr_holder_product_date", ["holder_key", "product_key", "business_date"], unique=False
        )

    with op.batch_alter_table("reconciliation_runs", schema=None) as batch_op:
        batch_op.add_column(sa.Column("holder_key", sa.String(length=64), nullable=False, server_default=""))


def downgrade():
    with op.batch_alter_table("reconciliation_runs", schema=None) as batch_op:
        batch_op.drop_column("holder_key")

    op.execute("DELETE FROM daily_stock_records WHERE holder_key != ''")
    with op.batch_alter_table("daily_stock_records", schema=None) as batch_op:
        batch_op.drop_index("ix_dsr_holder_product_date")
        batch_op.drop_constraint("uq_dsr_date_holder_product", type_="unique")
        batch_op.create_unique_constraint("uq_dsr_date_product", ["business_date", "product_key"])
        batch_op.drop_column("holder_key")

    for table in reversed(FEED_TABLES):
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.drop_index(f"ix_{table}_holder_id")
            batch_op.drop_column("holder_id")
