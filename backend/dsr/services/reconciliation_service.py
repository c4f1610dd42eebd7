# backend/dsr/services/reconciliation_service.py
"""
Daily stock reconciliation.

WHY: Turn the day's overlapping transaction feeds into one auditable
opening/closing statement per cylinder product, and keep it consistent
when the same day is recomputed (report opened twice, late data, cutoff).

FLOW (one business date of one ledger, the warehouse or a single holder):
1. Sources: every adapter fetched in parallel, outside the write transaction
2. Transaction (retried on conflicts):
   a. read the catalog, lock the date's records, read D-1 and the live snapshot
   b. resolve openings
   c. compute_day(): aggregate + closing formula (pure)
   d. upsert every row, commit once
3. Run audit row finished as succeeded / failed

A failed write rolls back everything for the date and raises
PersistenceFailure; stored state is exactly what it was before the run.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from dsr.extensions import db
from dsr.models import ReconciliationRun, DELTA_FIELDS, OPENING_SOURCE_CARRY_FORWARD, WAREHOUSE
from dsr.time_utils import parse_business_date, utcnow
from .aggregation_service import aggregate, fetch_batches
from .catalog_service import current_availability_map, list_tracked_products
from .closing_calculator import clamp_warnings, compute_closing
from .concurrency import date_locks, run_with_retry
from .data_quality import (
    ReconciliationWarning,
    WARN_CARRY_FORWARD_DRIFT,
    WARN_SOURCE_UNAVAILABLE,
    dedupe_warnings,
)
from .ledger_store import holders_on, records_for_date, upsert_record
from .opening_service import resolve_openings
from .source_adapters import active_holders, default_adapters
from .stock_events import FULL_TRANSFER_POLICIES, holder_key


TRIGGER_ON_DEMAND = "on_demand"
TRIGGER_CUTOFF = "cutoff"
TRIGGER_MANUAL = "manual"
TRIGGER_REBUILD = "rebuild"
TRIGGERS = (TRIGGER_ON_DEMAND, TRIGGER_CUTOFF, TRIGGER_MANUAL, TRIGGER_REBUILD)

RUN_STATUS_RUNNING = "running"
RUN_STATUS_SUCCEEDED = "succeeded"
RUN_STATUS_FAILED = "failed"

MAX_REBUILD_DAYS = 366
MAX_HOLDER_KEY_LENGTH = 64


class ReconciliationError(Exception):
    """Raised for invalid reconciliation requests (bad date, bad range)."""
    pass


class PersistenceFailure(Exception):
    """Raised when a run could not be committed. Nothing was written; safe to retry."""
    pass


@dataclass
class ProductComputation:
    product_key: str
    display_name: str
    opening_full: int
    opening_empty: int
    opening_source: str
    deltas: dict
    closing_full: int
    closing_empty: int
    warnings: list = field(default_factory=list)


@dataclass
class DayComputation:
    business_date: date
    rows: list
    # Findings not tied to a catalog product (unavailable sources, unknown keys)
    warnings: list
    is_partial: bool


@dataclass
class ReconciliationResult:
    business_date: date
    records: list
    warnings: list
    is_partial: bool
    run: ReconciliationRun
    records_written: int = 0
    holder: str = WAREHOUSE


def _config():
    cfg = current_app.config
    policy = cfg.get("DSR_FULL_CYLINDER_TRANSFER_POLICY", "both")
    if policy not in FULL_TRANSFER_POLICIES:
        raise ReconciliationError(f"invalid DSR_FULL_CYLINDER_TRANSFER_POLICY: {policy!r}")
    return {
        "tz_name": cfg.get("DSR_TIMEZONE", "Asia/Dubai"),
        "timeout": float(cfg.get("DSR_SOURCE_TIMEOUT_SECONDS", 5)),
        "max_workers": int(cfg.get("DSR_SOURCE_MAX_WORKERS", 5)),
        "policy": policy,
    }


def _coerce_date(value) -> date:
    try:
        return parse_business_date(value)
    except (TypeError, ValueError) as exc:
        raise ReconciliationError("date must be YYYY-MM-DD") from exc


def _coerce_holder(value) -> str:
    holder = holder_key(value)
    if len(holder) > MAX_HOLDER_KEY_LENGTH:
        raise ReconciliationError(f"holder must be at most {MAX_HOLDER_KEY_LENGTH} characters")
    return holder


def compute_day(day: date, catalog, openings: dict, batches, *, full_transfer_policy: str = "both") -> DayComputation:
    """
    Pure computation of one business day.

    catalog: TrackedProduct list; openings: {product_key: ResolvedOpening};
    batches: SourceBatch list. Touches neither the database nor the clock.
    """
    keys = [p.product_key for p in catalog]
    agg = aggregate(batches, keys, full_transfer_policy=full_transfer_policy)

    run_wide = list(agg.warnings)
    # An unavailable source leaves every product provisional
    shared = [w for w in run_wide if w.code == WARN_SOURCE_UNAVAILABLE]

    rows = []
    for product in catalog:
        key = product.product_key
        opening = openings[key]
        deltas = agg.deltas[key]
        balance = compute_closing(opening.opening_full, opening.opening_empty, deltas)
        warnings = list(shared) + list(opening.warnings) + clamp_warnings(key, balance)
        if balance.clamped:
            current_app.logger.warning(
                "Clamped negative closing for %r on %s (raw %s/%s)",
                key, day, balance.raw_full, balance.raw_empty,
            )
        rows.append(ProductComputation(
            product_key=key,
            display_name=product.display_name,
            opening_full=opening.opening_full,
            opening_empty=opening.opening_empty,
            opening_source=opening.source,
            deltas=dict(deltas),
            closing_full=balance.closing_full,
            closing_empty=balance.closing_empty,
            warnings=dedupe_warnings(warnings),
        ))

    return DayComputation(
        business_date=day,
        rows=rows,
        warnings=dedupe_warnings(run_wide),
        is_partial=agg.is_partial,
    )


def _drift_warnings(day: date, rows, following: dict) -> None:
    """Flag D+1 rows that were carried forward from a closing D no longer has."""
    for row in rows:
        nxt = following.get(row.product_key)
        if nxt is None or nxt.opening_source != OPENING_SOURCE_CARRY_FORWARD:
            continue
        if (nxt.opening_full, nxt.opening_empty) == (row.closing_full, row.closing_empty):
            continue
        current_app.logger.warning(
            "Carry-forward drift for %r: %s closes %s/%s but %s opened with %s/%s",
            row.product_key, day, row.closing_full, row.closing_empty,
            nxt.business_date, nxt.opening_full, nxt.opening_empty,
        )
        row.warnings.append(ReconciliationWarning(
            code=WARN_CARRY_FORWARD_DRIFT,
            message=(
                f"closing {row.closing_full}/{row.closing_empty} differs from the next day's "
                f"opening {nxt.opening_full}/{nxt.opening_empty}; rebuild to re-seed it"
            ),
            product_key=row.product_key,
        ))


def _start_run(day: date, trigger: str, holder: str) -> ReconciliationRun:
    run = ReconciliationRun(trigger=trigger, business_date=day, holder_key=holder, status=RUN_STATUS_RUNNING, warnings=[])
    try:
        db.session.add(run)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to record reconciliation run for %s", day)
        raise PersistenceFailure("could not start reconciliation run") from exc
    return run


def finish_run(run: ReconciliationRun, *, status: str, is_partial=False, warnings=(), records_written=0, error=None):
    try:
        run.status = status
        run.is_partial = bool(is_partial)
        run.warnings = [w.to_dict() for w in warnings]
        run.records_written = records_written
        run.error = error
        run.finished_at = utcnow()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to finish reconciliation run %s", run.id)


def reconcile_day(value, *, holder: str = WAREHOUSE, trigger: str = TRIGGER_ON_DEMAND, adapters=None,
                  run: ReconciliationRun | None = None, reseed_carry_forward: bool = False,
                  check_drift: bool = True) -> ReconciliationResult:
    """
    Recompute and persist the statement for one business date of one ledger.

    holder is WAREHOUSE for the company ledger or a holder id for that
    holder's own ledger. Holder ledgers cold-start at zero: the live
    inventory snapshot describes the warehouse only.

    Safe to call any number of times: with unchanged events the stored
    records stay identical. Raises ReconciliationError on bad input and
    PersistenceFailure when the write could not be committed.
    """
    day = _coerce_date(value)
    holder = _coerce_holder(holder)
    if trigger not in TRIGGERS:
        raise ReconciliationError(f"unknown trigger: {trigger!r}")
    cfg = _config()
    adapters = default_adapters() if adapters is None else adapters

    with date_locks.hold((day, holder)):
        if run is None:
            run = _start_run(day, trigger, holder)

        batches = fetch_batches(
            day, adapters,
            tz_name=cfg["tz_name"], timeout=cfg["timeout"], max_workers=cfg["max_workers"], holder=holder,
        )

        def _op():
            catalog = list_tracked_products()
            existing = records_for_date(day, holder=holder, for_update=True)
            previous = records_for_date(day - timedelta(days=1), holder=holder)
            following = records_for_date(day + timedelta(days=1), holder=holder)
            availability = current_availability_map() if holder == WAREHOUSE else {}

            keys = [p.product_key for p in catalog]
            openings = resolve_openings(
                day, keys,
                existing=existing, previous=previous, availability=availability,
                reseed_carry_forward=reseed_carry_forward,
            )
            computation = compute_day(day, catalog, openings, batches, full_transfer_policy=cfg["policy"])
            if check_drift:
                _drift_warnings(day, computation.rows, following)

            written = 0
            records = []
            for row in computation.rows:
                opening = openings[row.product_key]
                rec, changed = upsert_record(
                    day,
                    row.product_key,
                    row.display_name,
                    holder=holder,
                    deltas=row.deltas,
                    closing_full=row.closing_full,
                    closing_empty=row.closing_empty,
                    is_partial=computation.is_partial,
                    warnings=[w.to_dict() for w in row.warnings],
                    opening=opening.as_opening() if opening.needs_write else None,
                    existing=existing.get(row.product_key),
                )
                records.append(rec)
                written += int(changed)

            db.session.commit()
            return computation, records, written

        try:
            computation, records, written = run_with_retry(_op)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Reconciliation of %s (holder %r) failed to persist", day, holder)
            finish_run(run, status=RUN_STATUS_FAILED, error=exc.__class__.__name__)
            raise PersistenceFailure(f"could not save daily stock for {day.isoformat()}") from exc

        all_warnings = dedupe_warnings(
            list(computation.warnings) + [w for row in computation.rows for w in row.warnings]
        )
        finish_run(
            run,
            status=RUN_STATUS_SUCCEEDED,
            is_partial=computation.is_partial,
            warnings=all_warnings,
            records_written=written,
        )

    current_app.logger.info(
        "Reconciled %s holder=%r (%s): %d products, %d written, partial=%s",
        day, holder, trigger, len(records), written, computation.is_partial,
    )
    return ReconciliationResult(
        business_date=day,
        records=records,
        warnings=computation.warnings,
        is_partial=computation.is_partial,
        run=run,
        records_written=written,
        holder=holder,
    )


def holders_to_reconcile(day: date) -> list[str]:
    """Holders with feed activity on `day` or a ledger on the day before."""
    tz_name = current_app.config.get("DSR_TIMEZONE", "Asia/Dubai")
    try:
        holders = set(active_holders(day, tz_name)) | set(holders_on(day - timedelta(days=1)))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Could not list stock holders for %s", day)
        raise PersistenceFailure(f"could not list stock holders for {day.isoformat()}") from exc
    return sorted(holders)


def reconcile_holders(value, *, trigger: str = TRIGGER_CUTOFF, adapters=None) -> list:
    """
    Reconcile every holder ledger for a date, one ledger at a time.

    A holder whose run fails is logged and skipped; its run row records the
    failure and the remaining holders still run.
    """
    day = _coerce_date(value)
    results = []
    for holder in holders_to_reconcile(day):
        try:
            results.append(reconcile_day(day, holder=holder, trigger=trigger, adapters=adapters))
        except PersistenceFailure:
            current_app.logger.exception("Holder %r reconciliation failed for %s", holder, day)
    return results


def _grand_total(records) -> dict:
    fields = ("opening_full", "opening_empty") + DELTA_FIELDS + ("closing_full", "closing_empty")
    return {name: sum(int(getattr(rec, name) or 0) for rec in records) for name in fields}


def report_payload(result: ReconciliationResult) -> dict:
    """JSON handed to the report renderer: rows, grand total, partial flag, warnings."""
    return {
        "date": result.business_date.isoformat(),
        "holder": result.holder,
        "partial": result.is_partial,
        "warnings": [w.to_dict() for w in result.warnings],
        "rows": [rec.to_dict() for rec in result.records],
        "grand_total": _grand_total(result.records),
        "run_id": result.run.id,
    }


def build_report(value, *, holder: str = WAREHOUSE, trigger: str = TRIGGER_ON_DEMAND, adapters=None) -> dict:
    """On-demand: recompute the date, persist, and return the report payload."""
    return report_payload(reconcile_day(value, holder=holder, trigger=trigger, adapters=adapters))


def rebuild_range(start_value, end_value, *, holder: str = WAREHOUSE, adapters=None) -> list:
    """
    Operator repair: walk start..end (inclusive) in order, re-seeding
    carry_forward openings from the freshly recomputed previous closing.
    Frozen and cold_start openings are left alone.
    """
    start = _coerce_date(start_value)
    end = _coerce_date(end_value)
    if end < start:
        raise ReconciliationError("end date must be on or after start date")
    span = (end - start).days + 1
    if span > MAX_REBUILD_DAYS:
        raise ReconciliationError(f"rebuild range is limited to {MAX_REBUILD_DAYS} days")

    results = []
    for offset in range(span):
        day = start + timedelta(days=offset)
        results.append(reconcile_day(
            day, holder=holder, trigger=TRIGGER_REBUILD, adapters=adapters,
            reseed_carry_forward=True,
            # the next day inside the range is re-seeded right after
            check_drift=(day == end),
        ))
    return results
