from __future__ import annotations

from ..extensions import db
from dsr.time_utils import to_utc_z


# Day deltas, in statement column order. All are counts of cylinders or
# gas fills, never currency.
DELTA_FIELDS = (
    "empty_purchase",
    "full_purchase",
    "refilled",
    "full_cylinder_sales",
    "empty_cylinder_sales",
    "gas_sales",
    "deposits",
    "returns",
    "transfer_gas",
    "transfer_empty",
    "received_gas",
    "received_empty",
)

OPENING_SOURCE_FROZEN = "frozen"
OPENING_SOURCE_CARRY_FORWARD = "carry_forward"
OPENING_SOURCE_COLD_START = "cold_start"
OPENING_SOURCES = (OPENING_SOURCE_FROZEN, OPENING_SOURCE_CARRY_FORWARD, OPENING_SOURCE_COLD_START)

# holder_key of the company warehouse ledger; any other value is a stock
# holder (field employee) with a ledger of their own
WAREHOUSE = ""


class DailyStockRecord(db.Model):
    """
    One daily stock statement row per (business_date, holder_key, product_key).

    holder_key is WAREHOUSE ("") for the company ledger and the employee id
    for a per-holder ledger. It is never NULL so the unique constraint holds.

    OPENING IS FROZEN:
    opening_full/opening_empty are written once, when the opening is first
    resolved, and opening_source records how (frozen | carry_forward |
    cold_start). Recomputes only touch deltas and closing. A NULL
    opening_source marks a legacy row imported from the previous system
    whose opening was never explicitly resolved.

    CLOSING IS DERIVED:
    closing_full/closing_empty are always the output of the closing formula
    over the stored opening and deltas; they are never entered by hand.
    """
    __tablename__ = "daily_stock_records"
    __table_args__ = (
        db.UniqueConstraint("business_date", "holder_key", "product_key", name="uq_dsr_date_holder_product"),
        db.Index("ix_dsr_product_date", "product_key", "business_date"),
        db.Index("ix_dsr_holder_product_date", "holder_key", "product_key", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    business_date = db.Column(db.Date, nullable=False, index=True)
    holder_key = db.Column(db.String(64), nullable=False, default=WAREHOUSE, server_default="")
    product_key = db.Column(db.String(255), nullable=False)
    product_display_name = db.Column(db.String(255), nullable=False)

    opening_full = db.Column(db.Integer, nullable=False, default=0)
    opening_empty = db.Column(db.Integer, nullable=False, default=0)
    opening_source = db.Column(db.String(16), nullable=True)

    empty_purchase = db.Column(db.Integer, nullable=False, default=0)
    full_purchase = db.Column(db.Integer, nullable=False, default=0)
    refilled = db.Column(db.Integer, nullable=False, default=0)
    full_cylinder_sales = db.Column(db.Integer, nullable=False, default=0)
    empty_cylinder_sales = db.Column(db.Integer, nullable=False, default=0)
    gas_sales = db.Column(db.Integer, nullable=False, default=0)
    deposits = db.Column(db.Integer, nullable=False, default=0)
    returns = db.Column(db.Integer, nullable=False, default=0)
    transfer_gas = db.Column(db.Integer, nullable=False, default=0)
    transfer_empty = db.Column(db.Integer, nullable=False, default=0)
    received_gas = db.Column(db.Integer, nullable=False, default=0)
    received_empty = db.Column(db.Integer, nullable=False, default=0)

    closing_full = db.Column(db.Integer, nullable=False, default=0)
    closing_empty = db.Column(db.Integer, nullable=False, default=0)

    # Outcome of the last recompute
    is_partial = db.Column(db.Boolean, nullable=False, default=False)
    warnings = db.Column(db.JSON, nullable=False, default=list)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_recomputed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<DailyStockRecord date={self.business_date} holder={self.holder_key!r} key={self.product_key!r} "
            f"opening={self.opening_full}/{self.opening_empty} "
            f"closing={self.closing_full}/{self.closing_empty}>"
        )

    def deltas(self) -> dict:
        return {name: getattr(self, name) or 0 for name in DELTA_FIELDS}

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "date": self.business_date.isoformat(),
            "holder": self.holder_key,
            "product_key": self.product_key,
            "product_name": self.product_display_name,
            "opening_full": self.opening_full,
            "opening_empty": self.opening_empty,
            "opening_source": self.opening_source,
        }
        data.update(self.deltas())
        data.update({
            "closing_full": self.closing_full,
            "closing_empty": self.closing_empty,
            "is_partial": self.is_partial,
            "warnings": list(self.warnings or []),
            "created_at": to_utc_z(self.created_at),
            "last_recomputed_at": to_utc_z(self.last_recomputed_at),
        })
        return data


class ReconciliationRun(db.Model):
    """
    Audit row for every reconciliation run.

    cutoff_key is only set by the unattended cutoff trigger. It is unique, so
    claiming the row is how concurrent pollers agree that the cutoff for a
    business day already fired.
    """
    __tablename__ = "reconciliation_runs"
    __table_args__ = (
        db.UniqueConstraint("cutoff_key", name="uq_recon_runs_cutoff_key"),
        db.Index("ix_recon_runs_date_trigger", "business_date", "trigger"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # on_demand | cutoff | manual | rebuild
    trigger = db.Column(db.String(16), nullable=False)
    business_date = db.Column(db.Date, nullable=False)
    holder_key = db.Column(db.String(64), nullable=False, default=WAREHOUSE, server_default="")

    # running | succeeded | failed
    status = db.Column(db.String(16), nullable=False, default="running", index=True)

    is_partial = db.Column(db.Boolean, nullable=False, default=False)
    warnings = db.Column(db.JSON, nullable=False, default=list)
    records_written = db.Column(db.Integer, nullable=False, default=0)
    error = db.Column(db.Text, nullable=True)

    cutoff_key = db.Column(db.String(32), nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "date": self.business_date.isoformat(),
            "holder": self.holder_key,
            "status": self.status,
            "is_partial": self.is_partial,
            "warnings": list(self.warnings or []),
            "records_written": self.records_written,
            "error": self.error,
            "cutoff_key": self.cutoff_key,
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
        }
