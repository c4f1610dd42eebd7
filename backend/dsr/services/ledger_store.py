# Overview: Persistence for daily stock records; one row per (business_date, holder_key, product_key).

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import DailyStockRecord, DELTA_FIELDS, WAREHOUSE
from dsr.time_utils import utcnow
from .concurrency import lock_for_update
from .stock_events import holder_key as normalize_holder
from .stock_events import product_key as normalize_key
"""
Ledger store rules (authoritative)

- Writes for a business date only ever touch rows of that date and ledger.
- upsert_record() never commits; the reconciliation run owns the transaction.
- An upsert with unchanged figures is a no-op (no version bump, no timestamp),
  so repeated recomputes leave the stored row identical.
- Opening fields are only written when the caller passes a resolved opening.
- holder defaults to WAREHOUSE everywhere; holder ledgers never mix with it.
"""


class LedgerError(Exception):
    pass


def _scoped(day: date, holder: str):
    return db.session.query(DailyStockRecord).filter(
        DailyStockRecord.business_date == day,
        DailyStockRecord.holder_key == normalize_holder(holder),
    )


def get_record(day: date, key: str, *, holder: str = WAREHOUSE, for_update: bool = False) -> DailyStockRecord | None:
    q = _scoped(day, holder).filter(DailyStockRecord.product_key == normalize_key(key))
    if for_update:
        q = lock_for_update(q)
    return q.one_or_none()


def get_closing(day: date, key: str, *, holder: str = WAREHOUSE) -> tuple[int, int] | None:
    """(closing_full, closing_empty) for a stored record, or None."""
    rec = get_record(day, key, holder=holder)
    if rec is None:
        return None
    return rec.closing_full, rec.closing_empty


def previous_record(day: date, key: str, *, holder: str = WAREHOUSE) -> DailyStockRecord | None:
    """Most recent stored record strictly before `day` for one product and ledger."""
    return (
        db.session.query(DailyStockRecord)
        .filter(
            DailyStockRecord.business_date < day,
            DailyStockRecord.holder_key == normalize_holder(holder),
            DailyStockRecord.product_key == normalize_key(key),
        )
        .order_by(DailyStockRecord.business_date.desc())
        .first()
    )


def records_for_date(day: date, *, holder: str = WAREHOUSE, for_update: bool = False) -> dict:
    """{product_key: record} for one business date of one ledger."""
    q = _scoped(day, holder)
    if for_update:
        q = lock_for_update(q)
    return {rec.product_key: rec for rec in q.all()}


def holders_on(day: date) -> list[str]:
    """Holder ledgers (the warehouse excluded) with stored records on `day`."""
    rows = (
        db.session.query(DailyStockRecord.holder_key)
        .filter(DailyStockRecord.business_date == day, DailyStockRecord.holder_key != WAREHOUSE)
        .distinct()
        .all()
    )
    return sorted(value for (value,) in rows)


def list_records(*, start: date | None = None, end: date | None = None, product: str | None = None,
                 holder: str | None = None) -> list:
    """
    Stored records ordered by date, holder, then display name. Bounds are
    inclusive. holder=None lists every ledger.
    """
    if start and end and end < start:
        raise LedgerError("end_date must be on or after start_date")

    q = db.session.query(DailyStockRecord)
    if start:
        q = q.filter(DailyStockRecord.business_date >= start)
    if end:
        q = q.filter(DailyStockRecord.business_date <= end)
    if product:
        q = q.filter(DailyStockRecord.product_key == normalize_key(product))
    if holder is not None:
        q = q.filter(DailyStockRecord.holder_key == normalize_holder(holder))
    return q.order_by(
        DailyStockRecord.business_date.asc(),
        DailyStockRecord.holder_key.asc(),
        DailyStockRecord.product_display_name.asc(),
    ).all()


def upsert_record(
    day: date,
    key: str,
    display_name: str,
    *,
    deltas: dict,
    closing_full: int,
    closing_empty: int,
    is_partial: bool,
    warnings: list,
    opening=None,
    existing: DailyStockRecord | None = None,
    holder: str = WAREHOUSE,
) -> tuple[DailyStockRecord, bool]:
    """
    Insert or update the record for (day, holder, key). Returns (record, changed).

    opening is (opening_full, opening_empty, opening_source) or None to leave
    the stored opening alone. A new record requires an opening.
    """
    key = normalize_key(key)
    holder = normalize_holder(holder)
    rec = existing if existing is not None else get_record(day, key, holder=holder)

    if rec is None:
        if opening is None:
            raise LedgerError(f"cannot create record for {key!r} on {day} without an opening")
        rec = DailyStockRecord(
            business_date=day,
            holder_key=holder,
            product_key=key,
            product_display_name=display_name,
            opening_full=0,
            opening_empty=0,
        )
        db.session.add(rec)
        changed = True
    else:
        if rec.business_date != day or rec.product_key != key or (rec.holder_key or WAREHOUSE) != holder:
            raise LedgerError("record does not match the date/holder/product being written")
        changed = False

    values = {
        "product_display_name": display_name,
        "closing_full": int(closing_full),
        "closing_empty": int(closing_empty),
        "is_partial": bool(is_partial),
        "warnings": list(warnings),
    }
    values.update({name: int(deltas.get(name, 0)) for name in DELTA_FIELDS})
    if opening is not None:
        full, empty, source = opening
        values.update({"opening_full": int(full), "opening_empty": int(empty), "opening_source": source})

    for name, value in values.items():
        if getattr(rec, name) != value:
            setattr(rec, name, value)
            changed = True

    if changed:
        rec.last_recomputed_at = utcnow()
    return rec, changed


def delete_record(day: date, key: str, *, holder: str = WAREHOUSE) -> None:
    """Remove one stored record. Does not touch neighbouring days."""
    rec = get_record(day, key, holder=holder, for_update=True)
    if rec is None:
        raise LedgerError("record not found")
    db.session.delete(rec)
