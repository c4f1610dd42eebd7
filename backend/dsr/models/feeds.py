from __future__ import annotations

from ..extensions import db

"""
Upstream transaction feeds (read-only to the reconciliation engine).

These tables are written by the sales, cylinder and inventory screens. Their
shapes are deliberately heterogeneous: some are pre-aggregated per day with a
"YYYY-MM-DD" string, some are granular with a timestamp; several of them
repeat facts another feed already records. Normalization into stock events
happens once, in services.source_adapters.

holder_id names the stock holder (field employee) a row belongs to. NULL or
empty means the company warehouse.
"""


class DailySale(db.Model):
    """
    Per-day sales aggregate, one row per (date, product).

    Besides the sales counters it also carries refill, transfer and
    received-back counters. Those duplicate the refill and stock transfer
    feeds and are never authoritative for the daily stock ledger.
    """
    __tablename__ = "daily_sales"
    __table_args__ = (
        db.Index("ix_daily_sales_date_product", "date", "product_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    product_name = db.Column(db.String(255), nullable=False)

    # gas | cylinder
    category = db.Column(db.String(16), nullable=False)
    holder_id = db.Column(db.String(64), nullable=True, index=True)

    # For gas sales: the cylinder the gas was sold from
    cylinder_name = db.Column(db.String(255), nullable=True)

    # full | empty (cylinder rows only)
    cylinder_status = db.Column(db.String(16), nullable=True)

    gas_sales_quantity = db.Column(db.Integer, nullable=False, default=0)
    full_cylinder_sales_quantity = db.Column(db.Integer, nullable=False, default=0)
    empty_cylinder_sales_quantity = db.Column(db.Integer, nullable=False, default=0)
    cylinder_refills_quantity = db.Column(db.Integer, nullable=False, default=0)
    transfer_quantity = db.Column(db.Integer, nullable=False, default=0)
    received_back_quantity = db.Column(db.Integer, nullable=False, default=0)


class DailyRefill(db.Model):
    """Refills performed per day and cylinder type."""
    __tablename__ = "daily_refills"
    __table_args__ = (
        db.Index("ix_daily_refills_date_cylinder", "date", "cylinder_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    cylinder_name = db.Column(db.String(255), nullable=False)
    today_refill = db.Column(db.Integer, nullable=False, default=0)
    holder_id = db.Column(db.String(64), nullable=True, index=True)


class CylinderTransaction(db.Model):
    """
    Granular customer cylinder movements.

    type: deposit | return | refill
    status: pending | cleared | cancelled

    Refill rows are booked here by the cylinder screen and again in
    daily_refills; only the latter counts.
    """
    __tablename__ = "cylinder_transactions"
    __table_args__ = (
        db.Index("ix_cylinder_tx_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default="cleared")
    holder_id = db.Column(db.String(64), nullable=True, index=True)

    # UTC-naive
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False)


class StockTransfer(db.Model):
    """
    Stock moved between the warehouse and another holder (usually an employee).

    direction is relative to the warehouse:
    - out: warehouse -> holder
    - in:  holder -> warehouse

    The sending side counts a move on assigned_at unless it was rejected.
    The receiving side counts it on accepted_at, once accepted/returned.

    status: assigned | pending | accepted | returned | rejected
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.Index("ix_stock_transfers_assigned", "assigned_at"),
        db.Index("ix_stock_transfers_accepted", "accepted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)

    # For gas transfers: the cylinder the gas is carried in
    cylinder_name = db.Column(db.String(255), nullable=True)

    # gas | cylinder
    category = db.Column(db.String(16), nullable=False)

    # full | empty (cylinder transfers only)
    cylinder_state = db.Column(db.String(16), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    direction = db.Column(db.String(8), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="assigned", index=True)

    # The holder on the other side of the move
    holder_id = db.Column(db.String(64), nullable=True, index=True)

    # UTC-naive
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)


class PurchaseOrder(db.Model):
    """
    Supplier purchases.

    category='gas' orders refill the company's own empty cylinders at the
    supplier; those are covered by the refill feed and are not purchases of
    stock for the ledger.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_date", "purchase_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_name = db.Column(db.String(255), nullable=False)

    # gas | cylinder
    category = db.Column(db.String(16), nullable=False, default="cylinder")

    # full | empty
    cylinder_status = db.Column(db.String(16), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # pending | completed | cancelled
    status = db.Column(db.String(16), nullable=False, default="pending")
    holder_id = db.Column(db.String(64), nullable=True, index=True)

    # UTC-naive
    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False)
