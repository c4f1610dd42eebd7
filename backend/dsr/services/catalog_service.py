# Overview: Read-only access to the product catalog and live inventory snapshot.

from __future__ import annotations

from dataclasses import dataclass

from dsr.extensions import db
from dsr.models import Product, InventoryItem
from .stock_events import CATEGORY_CYLINDER, product_key


@dataclass(frozen=True)
class TrackedProduct:
    product_key: str
    display_name: str
    category: str


@dataclass(frozen=True)
class Availability:
    available_full: int
    available_empty: int
    current_stock: int


ZERO_AVAILABILITY = Availability(available_full=0, available_empty=0, current_stock=0)


def list_tracked_products() -> list[TrackedProduct]:
    """
    Active cylinder products, ordered by display name.

    Two catalog names that normalize to the same key are one tracked
    product; the oldest row supplies the display name.
    """
    rows = (
        db.session.query(Product)
        .filter(Product.category == CATEGORY_CYLINDER, Product.is_active.is_(True))
        .order_by(Product.id.asc())
        .all()
    )
    tracked = {}
    for row in rows:
        key = product_key(row.name)
        if not key or key in tracked:
            continue
        tracked[key] = TrackedProduct(product_key=key, display_name=row.name.strip(), category=row.category)
    return sorted(tracked.values(), key=lambda p: p.display_name.lower())


def current_availability_map() -> dict[str, Availability]:
    """Live on-hand counts keyed by product key (cylinder products only)."""
    rows = (
        db.session.query(Product, InventoryItem)
        .join(InventoryItem, InventoryItem.product_id == Product.id)
        .filter(Product.category == CATEGORY_CYLINDER)
        .order_by(Product.id.asc())
        .all()
    )
    out = {}
    for product, item in rows:
        key = product_key(product.name)
        if not key or key in out:
            continue
        out[key] = Availability(
            available_full=max(0, int(item.available_full or 0)),
            available_empty=max(0, int(item.available_empty or 0)),
            current_stock=max(0, int(item.current_stock or 0)),
        )
    return out


def get_current_availability(key: str) -> Availability:
    """Live on-hand counts for one product; zeros when nothing is on record."""
    return current_availability_map().get(product_key(key), ZERO_AVAILABILITY)
