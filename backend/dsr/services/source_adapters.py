# Overview: One adapter per upstream feed; normalizes raw rows into stock events.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from dsr.extensions import db
from dsr.models import (
    DailySale,
    DailyRefill,
    CylinderTransaction,
    StockTransfer as StockTransferRow,
    PurchaseOrder,
    DELTA_FIELDS,
    WAREHOUSE,
)
from dsr.time_utils import business_date_of, business_day_bounds
from .stock_events import (
    CATEGORY_CYLINDER,
    CATEGORY_GAS,
    DELTA_FAMILIES,
    FAMILY_FIELDS,
    DIRECTION_IN,
    DIRECTION_OUT,
    FAMILY_CYLINDER_SALES,
    FAMILY_DEPOSITS_RETURNS,
    FAMILY_GAS_SALES,
    FAMILY_PURCHASES,
    FAMILY_RECEIPTS_IN,
    FAMILY_REFILLS,
    FAMILY_TRANSFERS_OUT,
    CylinderDeposit,
    CylinderReturn,
    Purchase,
    Refill,
    Sale,
    StockTransfer,
    holder_key,
    product_key,
)
"""
Source adapter rules (authoritative)

Date matching:
- Timestamp feeds are range-queried with the UTC bounds of the business day
  and then re-checked with business_date_of(); a row belongs to exactly one day.
- Date-string feeds ("YYYY-MM-DD", already business dates) match on the ISO date.

Exclusivity:
- AUTHORITATIVE_SOURCES maps every delta family to exactly one adapter.
- Adapters normalize EVERYTHING their rows say, including facts another feed
  owns; the aggregator discards contributions for families the adapter does
  not own. validate_source_registry() runs at app startup.

Holders:
- Every fetch is for one ledger: the warehouse (holder "") or one holder.
- Warehouse ledgers read rows whose holder_id is NULL or empty; a holder
  ledger reads that holder's rows only.

Transfers:
- Rows are warehouse-relative; a holder sees them mirrored.
- Sent (out): counted on assigned_at unless rejected.
- Received (in): counted on accepted_at, and only once accepted/returned.
"""

SOURCE_SALES = "sales"
SOURCE_REFILLS = "refills"
SOURCE_DEPOSITS = "deposits"
SOURCE_TRANSFERS = "transfers"
SOURCE_PURCHASES = "purchases"

AUTHORITATIVE_SOURCES = {
    FAMILY_GAS_SALES: SOURCE_SALES,
    FAMILY_CYLINDER_SALES: SOURCE_SALES,
    FAMILY_REFILLS: SOURCE_REFILLS,
    FAMILY_DEPOSITS_RETURNS: SOURCE_DEPOSITS,
    FAMILY_TRANSFERS_OUT: SOURCE_TRANSFERS,
    FAMILY_RECEIPTS_IN: SOURCE_TRANSFERS,
    FAMILY_PURCHASES: SOURCE_PURCHASES,
}

TRANSFER_IN_ACCEPTED_STATUSES = ("accepted", "returned")
TRANSFER_OUT_EXCLUDED_STATUSES = ("rejected",)


class SourceUnavailable(Exception):
    """Raised when an upstream feed cannot be read for this run."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class SourceRegistryError(Exception):
    """Raised at startup when delta family ownership is not one-to-one."""
    pass


class SourceAdapter:
    """
    Base adapter.

    Subclasses set `name`, `families` (the delta families they are
    authoritative for) and implement _events_for_day().
    """
    name: str = ""
    families: frozenset = frozenset()

    def fetch_events(self, day: date, *, tz_name: str, holder: str = WAREHOUSE, product_keys=None) -> list:
        """
        Normalized events for one business day of one ledger.

        product_keys optionally narrows the result to those keys; feeds carry
        free-text names, so the filter is applied after normalization.
        """
        try:
            events = list(self._events_for_day(day, tz_name, holder_key(holder)))
        except SQLAlchemyError as exc:
            raise SourceUnavailable(self.name, exc.__class__.__name__) from exc
        if product_keys is not None:
            wanted = set(product_keys)
            events = [e for e in events if e.product_key in wanted]
        return events

    def _events_for_day(self, day: date, tz_name: str, holder: str):
        raise NotImplementedError

    def _build(self, factory, ref: str, *, owned: bool = True, **kwargs):
        """
        Construct one event; malformed rows are logged and skipped.

        owned=False marks a fact another feed is authoritative for. The
        aggregator drops those anyway, so a bad one is only a debug line.
        """
        try:
            return factory(source_ref=ref, **kwargs)
        except ValueError as exc:
            if owned:
                current_app.logger.warning("Skipping malformed %s row %s: %s", self.name, ref, exc)
            else:
                current_app.logger.debug("Skipping duplicated %s fact on %s: %s", self.name, ref, exc)
            return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"


def _quantity(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _cylinder_key(cylinder_name, product_name) -> str:
    """Gas is booked against the cylinder it travels in."""
    return product_key(cylinder_name) or product_key(product_name)


def _lower(value) -> str | None:
    return value.strip().lower() if isinstance(value, str) and value.strip() else None


def _holder_clause(column, holder: str):
    """Rows belonging to one ledger; NULL and "" both mean the warehouse."""
    if holder:
        return column == holder
    return or_(column.is_(None), column == WAREHOUSE)


class SalesAdapter(SourceAdapter):
    """daily_sales aggregate rows."""
    name = SOURCE_SALES
    families = frozenset({FAMILY_GAS_SALES, FAMILY_CYLINDER_SALES})

    def _events_for_day(self, day, tz_name, holder):
        rows = (
            db.session.query(DailySale)
            .filter(DailySale.date == day.isoformat(), _holder_clause(DailySale.holder_id, holder))
            .order_by(DailySale.id.asc())
            .all()
        )
        for row in rows:
            yield from self._normalize(row, day)

    def _normalize(self, row, day):
        ref = f"daily_sales:{row.id}"
        category = _lower(row.category)
        state = _lower(row.cylinder_status)
        cylinder = _cylinder_key(row.cylinder_name, row.product_name)
        own = product_key(row.product_name)

        # (factory, kwargs, owned)
        candidates = []
        if _quantity(row.gas_sales_quantity) > 0:
            candidates.append((Sale, dict(
                product_key=cylinder, category=CATEGORY_GAS,
                quantity=_quantity(row.gas_sales_quantity),
            ), True))
        if _quantity(row.full_cylinder_sales_quantity) > 0:
            candidates.append((Sale, dict(
                product_key=own, category=CATEGORY_CYLINDER, cylinder_state="full",
                quantity=_quantity(row.full_cylinder_sales_quantity),
            ), True))
        if _quantity(row.empty_cylinder_sales_quantity) > 0:
            candidates.append((Sale, dict(
                product_key=own, category=CATEGORY_CYLINDER, cylinder_state="empty",
                quantity=_quantity(row.empty_cylinder_sales_quantity),
            ), True))
        # Duplicates of the refill and transfer feeds
        if _quantity(row.cylinder_refills_quantity) > 0:
            candidates.append((Refill, dict(
                cylinder_key=cylinder, quantity=_quantity(row.cylinder_refills_quantity),
            ), False))
        for qty_field, direction in (("transfer_quantity", DIRECTION_OUT), ("received_back_quantity", DIRECTION_IN)):
            qty = _quantity(getattr(row, qty_field))
            if qty > 0:
                candidates.append((StockTransfer, dict(
                    product_key=cylinder if category == CATEGORY_GAS else own,
                    category=category, cylinder_state=state,
                    direction=direction, quantity=qty,
                ), False))

        for factory, kwargs, owned in candidates:
            event = self._build(factory, ref, owned=owned, business_date=day, **kwargs)
            if event is not None:
                yield event


class RefillAdapter(SourceAdapter):
    """daily_refills rows."""
    name = SOURCE_REFILLS
    families = frozenset({FAMILY_REFILLS})

    def _events_for_day(self, day, tz_name, holder):
        rows = (
            db.session.query(DailyRefill)
            .filter(DailyRefill.date == day.isoformat(), _holder_clause(DailyRefill.holder_id, holder))
            .order_by(DailyRefill.id.asc())
            .all()
        )
        for row in rows:
            qty = _quantity(row.today_refill)
            if qty <= 0:
                continue
            event = self._build(
                Refill, f"daily_refills:{row.id}",
                business_date=day, cylinder_key=product_key(row.cylinder_name), quantity=qty,
            )
            if event is not None:
                yield event


class DepositReturnAdapter(SourceAdapter):
    """cylinder_transactions rows (deposit / return / refill)."""
    name = SOURCE_DEPOSITS
    families = frozenset({FAMILY_DEPOSITS_RETURNS})

    _FACTORIES = {
        "deposit": CylinderDeposit,
        "return": CylinderReturn,
    }

    def _events_for_day(self, day, tz_name, holder):
        start, end = business_day_bounds(day, tz_name)
        rows = (
            db.session.query(CylinderTransaction)
            .filter(
                CylinderTransaction.occurred_at >= start,
                CylinderTransaction.occurred_at < end,
                CylinderTransaction.status != "cancelled",
                _holder_clause(CylinderTransaction.holder_id, holder),
            )
            .order_by(CylinderTransaction.id.asc())
            .all()
        )
        for row in rows:
            if business_date_of(row.occurred_at, tz_name) != day:
                continue
            qty = _quantity(row.quantity)
            if qty <= 0:
                continue
            ref = f"cylinder_transactions:{row.id}"
            kind = _lower(row.type)
            key = product_key(row.product_name)
            if kind == "refill":
                event = self._build(Refill, ref, owned=False, business_date=day, cylinder_key=key, quantity=qty)
            elif kind in self._FACTORIES:
                event = self._build(self._FACTORIES[kind], ref, business_date=day, product_key=key, quantity=qty)
            else:
                current_app.logger.warning("Skipping %s with unknown type %r", ref, row.type)
                continue
            if event is not None:
                yield event


class TransferAdapter(SourceAdapter):
    """stock_transfers rows; sent on initiation, received on acceptance."""
    name = SOURCE_TRANSFERS
    families = frozenset({FAMILY_TRANSFERS_OUT, FAMILY_RECEIPTS_IN})

    def _events_for_day(self, day, tz_name, holder):
        start, end = business_day_bounds(day, tz_name)

        # Row direction is warehouse-relative
        if holder:
            sent_rows, received_rows = DIRECTION_IN, DIRECTION_OUT
            scope = (StockTransferRow.holder_id == holder,)
        else:
            sent_rows, received_rows = DIRECTION_OUT, DIRECTION_IN
            scope = ()

        sent = (
            db.session.query(StockTransferRow)
            .filter(
                StockTransferRow.direction == sent_rows,
                StockTransferRow.status.notin_(TRANSFER_OUT_EXCLUDED_STATUSES),
                StockTransferRow.assigned_at >= start,
                StockTransferRow.assigned_at < end,
                *scope,
            )
            .order_by(StockTransferRow.id.asc())
            .all()
        )
        for row in sent:
            if business_date_of(row.assigned_at, tz_name) == day:
                event = self._normalize(row, day, DIRECTION_OUT)
                if event is not None:
                    yield event

        received = (
            db.session.query(StockTransferRow)
            .filter(
                StockTransferRow.direction == received_rows,
                StockTransferRow.status.in_(TRANSFER_IN_ACCEPTED_STATUSES),
                StockTransferRow.accepted_at.isnot(None),
                StockTransferRow.accepted_at >= start,
                StockTransferRow.accepted_at < end,
                *scope,
            )
            .order_by(StockTransferRow.id.asc())
            .all()
        )
        for row in received:
            if business_date_of(row.accepted_at, tz_name) == day:
                event = self._normalize(row, day, DIRECTION_IN)
                if event is not None:
                    yield event

    def _normalize(self, row, day, direction):
        qty = _quantity(row.quantity)
        if qty <= 0:
            return None
        category = _lower(row.category)
        key = _cylinder_key(row.cylinder_name, row.product_name) if category == CATEGORY_GAS else product_key(row.product_name)
        return self._build(
            StockTransfer, f"stock_transfers:{row.id}",
            business_date=day,
            product_key=key,
            category=category,
            cylinder_state=_lower(row.cylinder_state),
            direction=direction,
            quantity=qty,
        )


class PurchaseAdapter(SourceAdapter):
    """purchase_orders rows; gas orders are refills and belong to the refill feed."""
    name = SOURCE_PURCHASES
    families = frozenset({FAMILY_PURCHASES})

    def _events_for_day(self, day, tz_name, holder):
        start, end = business_day_bounds(day, tz_name)
        rows = (
            db.session.query(PurchaseOrder)
            .filter(
                PurchaseOrder.purchase_date >= start,
                PurchaseOrder.purchase_date < end,
                PurchaseOrder.status != "cancelled",
                _holder_clause(PurchaseOrder.holder_id, holder),
            )
            .order_by(PurchaseOrder.id.asc())
            .all()
        )
        for row in rows:
            if business_date_of(row.purchase_date, tz_name) != day:
                continue
            qty = _quantity(row.quantity)
            if qty <= 0:
                continue
            ref = f"purchase_orders:{row.id}"
            key = product_key(row.product_name)
            if _lower(row.category) == CATEGORY_GAS:
                event = self._build(Refill, ref, owned=False, business_date=day, cylinder_key=key, quantity=qty)
            else:
                event = self._build(
                    Purchase, ref,
                    business_date=day, product_key=key,
                    cylinder_state=_lower(row.cylinder_status), quantity=qty,
                )
            if event is not None:
                yield event


def default_adapters() -> list:
    return [SalesAdapter(), RefillAdapter(), DepositReturnAdapter(), TransferAdapter(), PurchaseAdapter()]


def active_holders(day: date, tz_name: str) -> list[str]:
    """Holder ids with any feed row on `day` (the warehouse excluded), sorted."""
    start, end = business_day_bounds(day, tz_name)
    iso = day.isoformat()
    queries = (
        db.session.query(DailySale.holder_id).filter(DailySale.date == iso),
        db.session.query(DailyRefill.holder_id).filter(DailyRefill.date == iso),
        db.session.query(CylinderTransaction.holder_id).filter(
            CylinderTransaction.occurred_at >= start, CylinderTransaction.occurred_at < end,
        ),
        db.session.query(StockTransferRow.holder_id).filter(or_(
            and_(StockTransferRow.assigned_at >= start, StockTransferRow.assigned_at < end),
            and_(StockTransferRow.accepted_at >= start, StockTransferRow.accepted_at < end),
        )),
        db.session.query(PurchaseOrder.holder_id).filter(
            PurchaseOrder.purchase_date >= start, PurchaseOrder.purchase_date < end,
        ),
    )
    holders = set()
    for query in queries:
        holders.update(holder_key(value) for (value,) in query.distinct().all())
    holders.discard(WAREHOUSE)
    return sorted(holders)


def validate_source_registry(adapters, authoritative=None, family_fields=None) -> None:
    """
    Check one-to-one family ownership.

    - the families partition the ledger's delta columns exactly
    - every delta family has an owner, and only known families are mapped
    - adapter names are unique and every mapped owner is registered
    - each adapter declares exactly the families the mapping gives it
    """
    authoritative = AUTHORITATIVE_SOURCES if authoritative is None else authoritative
    family_fields = FAMILY_FIELDS if family_fields is None else family_fields

    columns = [name for names in family_fields.values() for name in names]
    if sorted(columns) != sorted(DELTA_FIELDS):
        raise SourceRegistryError(
            f"delta families cover {sorted(columns)}, ledger columns are {sorted(DELTA_FIELDS)}"
        )

    missing = [f for f in DELTA_FAMILIES if f not in authoritative]
    if missing:
        raise SourceRegistryError(f"delta families without an authoritative source: {missing}")
    unknown = [f for f in authoritative if f not in DELTA_FAMILIES]
    if unknown:
        raise SourceRegistryError(f"unknown delta families in source mapping: {unknown}")

    names = [a.name for a in adapters]
    if len(set(names)) != len(names):
        raise SourceRegistryError(f"duplicate adapter names: {names}")

    by_name = {a.name: a for a in adapters}
    for family, owner in authoritative.items():
        if owner not in by_name:
            raise SourceRegistryError(f"family {family!r} is owned by unregistered source {owner!r}")

    for adapter in adapters:
        expected = {f for f, owner in authoritative.items() if owner == adapter.name}
        if set(adapter.families) != expected:
            raise SourceRegistryError(
                f"source {adapter.name!r} declares {sorted(adapter.families)}, "
                f"mapping gives it {sorted(expected)}"
            )
