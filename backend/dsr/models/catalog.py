from __future__ import annotations

from ..extensions import db


class Product(db.Model):
    """
    Product catalog entry (owned by the catalog collaborator).

    Only products with category='cylinder' are tracked by the daily stock
    ledger. Gas products exist in the catalog but their movements are
    booked against the cylinder they were filled into.

    NAME DESIGN DECISION:
    Upstream feeds do not share a foreign key with the catalog; they carry
    free-text product names. The ledger joins on the normalized name
    (see services.stock_events.product_key), so `name` is the identity here.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_category_active", "category", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)

    # gas | cylinder
    category = db.Column(db.String(16), nullable=False, default="cylinder")

    # large | small (informational)
    cylinder_size = db.Column(db.String(16), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} category={self.category!r}>"


class InventoryItem(db.Model):
    """
    Live on-hand snapshot per product (owned by the inventory collaborator).

    This is a mutable "right now" count, not a ledger. The reconciliation
    engine reads it only to seed the very first day a product is tracked.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, unique=True)

    available_full = db.Column(db.Integer, nullable=False, default=0)
    available_empty = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("inventory_item", uselist=False, lazy=True))
