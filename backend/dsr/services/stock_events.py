# Overview: Normalized stock events shared by every transaction source adapter.

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Union

from dsr.models.ledger import DELTA_FIELDS
"""
Stock event vocabulary (authoritative)

- Upstream feeds are normalized ONCE, at the adapter boundary, into the event
  variants below. Raw rows never reach the aggregator.
- Every event carries the business_date it is bucketed into and a
  product_key (see product_key()).
- Quantities are positive counts of cylinders or gas fills.
- Every event belongs to exactly one delta family; every family is owned by
  exactly one adapter (services.source_adapters.AUTHORITATIVE_SOURCES).
"""

CATEGORY_GAS = "gas"
CATEGORY_CYLINDER = "cylinder"
CATEGORIES = (CATEGORY_GAS, CATEGORY_CYLINDER)

STATE_FULL = "full"
STATE_EMPTY = "empty"
CYLINDER_STATES = (STATE_FULL, STATE_EMPTY)

DIRECTION_OUT = "out"
DIRECTION_IN = "in"
DIRECTIONS = (DIRECTION_OUT, DIRECTION_IN)

FAMILY_GAS_SALES = "gas_sales"
FAMILY_CYLINDER_SALES = "cylinder_sales"
FAMILY_REFILLS = "refills"
FAMILY_DEPOSITS_RETURNS = "deposits_returns"
FAMILY_TRANSFERS_OUT = "transfers_out"
FAMILY_RECEIPTS_IN = "receipts_in"
FAMILY_PURCHASES = "purchases"

# Ledger columns each family writes to
FAMILY_FIELDS = {
    FAMILY_GAS_SALES: ("gas_sales",),
    FAMILY_CYLINDER_SALES: ("full_cylinder_sales", "empty_cylinder_sales"),
    FAMILY_REFILLS: ("refilled",),
    FAMILY_DEPOSITS_RETURNS: ("deposits", "returns"),
    FAMILY_TRANSFERS_OUT: ("transfer_gas", "transfer_empty"),
    FAMILY_RECEIPTS_IN: ("received_gas", "received_empty"),
    FAMILY_PURCHASES: ("full_purchase", "empty_purchase"),
}
DELTA_FAMILIES = tuple(FAMILY_FIELDS)

# How a transferred FULL cylinder moves the statement columns
FULL_TRANSFER_BOTH = "both"    # gas and shell both move
FULL_TRANSFER_EMPTY = "empty"  # shell only (legacy behaviour)
FULL_TRANSFER_GAS = "gas"      # gas only
FULL_TRANSFER_POLICIES = (FULL_TRANSFER_BOTH, FULL_TRANSFER_EMPTY, FULL_TRANSFER_GAS)

_WHITESPACE = re.compile(r"\s+")


def product_key(name) -> str:
    """
    Normalized join key for a product name: whitespace runs collapsed to one
    space, trimmed, lower-cased. Non-string input yields "".
    """
    if isinstance(name, bool) or not isinstance(name, (str, int, float)):
        return ""
    return _WHITESPACE.sub(" ", str(name)).strip().lower()


def holder_key(value) -> str:
    """Stored holder key: the trimmed holder id, "" (the warehouse) when blank."""
    if value is None:
        return ""
    return str(value).strip()


def _require(value, allowed, label):
    if value not in allowed:
        raise ValueError(f"invalid {label}: {value!r}")


def _require_quantity(quantity):
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"quantity must be a positive integer, got {quantity!r}")


@dataclass(frozen=True)
class Sale:
    business_date: date
    product_key: str
    category: str
    quantity: int
    cylinder_state: str | None = None
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require(self.category, CATEGORIES, "sale category")
        if self.category == CATEGORY_CYLINDER:
            _require(self.cylinder_state, CYLINDER_STATES, "cylinder state")
        _require_quantity(self.quantity)

    @property
    def family(self) -> str:
        return FAMILY_GAS_SALES if self.category == CATEGORY_GAS else FAMILY_CYLINDER_SALES


@dataclass(frozen=True)
class Refill:
    business_date: date
    cylinder_key: str
    quantity: int
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require_quantity(self.quantity)

    @property
    def product_key(self) -> str:
        return self.cylinder_key

    @property
    def family(self) -> str:
        return FAMILY_REFILLS


@dataclass(frozen=True)
class CylinderDeposit:
    business_date: date
    product_key: str
    quantity: int
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require_quantity(self.quantity)

    @property
    def family(self) -> str:
        return FAMILY_DEPOSITS_RETURNS


@dataclass(frozen=True)
class CylinderReturn:
    business_date: date
    product_key: str
    quantity: int
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require_quantity(self.quantity)

    @property
    def family(self) -> str:
        return FAMILY_DEPOSITS_RETURNS


@dataclass(frozen=True)
class StockTransfer:
    """business_date is the effective date: initiation for out, acceptance for in."""
    business_date: date
    product_key: str
    category: str
    direction: str
    quantity: int
    cylinder_state: str | None = None
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require(self.category, CATEGORIES, "transfer category")
        _require(self.direction, DIRECTIONS, "transfer direction")
        if self.category == CATEGORY_CYLINDER:
            _require(self.cylinder_state, CYLINDER_STATES, "cylinder state")
        _require_quantity(self.quantity)

    @property
    def family(self) -> str:
        return FAMILY_TRANSFERS_OUT if self.direction == DIRECTION_OUT else FAMILY_RECEIPTS_IN


@dataclass(frozen=True)
class Purchase:
    business_date: date
    product_key: str
    cylinder_state: str
    quantity: int
    source_ref: str | None = field(default=None, compare=False)

    def __post_init__(self):
        _require(self.cylinder_state, CYLINDER_STATES, "cylinder state")
        _require_quantity(self.quantity)

    @property
    def family(self) -> str:
        return FAMILY_PURCHASES


StockEvent = Union[Sale, Refill, CylinderDeposit, CylinderReturn, StockTransfer, Purchase]


def _transfer_deltas(event: StockTransfer, full_transfer_policy: str) -> dict:
    gas_field, empty_field = FAMILY_FIELDS[event.family]
    if event.category == CATEGORY_GAS:
        return {gas_field: event.quantity}
    if event.cylinder_state == STATE_EMPTY:
        return {empty_field: event.quantity}

    if full_transfer_policy == FULL_TRANSFER_BOTH:
        return {gas_field: event.quantity, empty_field: event.quantity}
    if full_transfer_policy == FULL_TRANSFER_EMPTY:
        return {empty_field: event.quantity}
    if full_transfer_policy == FULL_TRANSFER_GAS:
        return {gas_field: event.quantity}
    raise ValueError(f"invalid full cylinder transfer policy: {full_transfer_policy!r}")


def event_deltas(event: StockEvent, *, full_transfer_policy: str = FULL_TRANSFER_BOTH) -> dict:
    """
    Map one event onto ledger delta columns: {field_name: quantity}.

    Every returned field belongs to event.family.
    """
    if isinstance(event, Sale):
        if event.category == CATEGORY_GAS:
            return {"gas_sales": event.quantity}
        if event.cylinder_state == STATE_FULL:
            return {"full_cylinder_sales": event.quantity}
        return {"empty_cylinder_sales": event.quantity}

    if isinstance(event, Refill):
        return {"refilled": event.quantity}

    if isinstance(event, CylinderDeposit):
        return {"deposits": event.quantity}

    if isinstance(event, CylinderReturn):
        return {"returns": event.quantity}

    if isinstance(event, StockTransfer):
        return _transfer_deltas(event, full_transfer_policy)

    if isinstance(event, Purchase):
        if event.cylinder_state == STATE_FULL:
            return {"full_purchase": event.quantity}
        return {"empty_purchase": event.quantity}

    raise TypeError(f"not a stock event: {event!r}")


def empty_deltas() -> dict:
    return {name: 0 for name in DELTA_FIELDS}
