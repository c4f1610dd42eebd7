# Overview: Fixed reconciliation formula for closing full/empty stock.

from __future__ import annotations

from dataclasses import dataclass

from .data_quality import ReconciliationWarning, WARN_NEGATIVE_BALANCE_CLAMPED


@dataclass(frozen=True)
class ClosingBalance:
    closing_full: int
    closing_empty: int
    raw_full: int
    raw_empty: int

    @property
    def clamped(self) -> bool:
        return self.raw_full < 0 or self.raw_empty < 0


def compute_closing(opening_full: int, opening_empty: int, deltas: dict) -> ClosingBalance:
    """
    Apply the daily stock formula.

    A cylinder turns empty the moment its gas is sold, so empties are not
    tracked as their own balance: closing_empty is the combined full+empty
    pool minus whatever is still full at day's end. closing_full must be
    known (and clamped) first.

    Negative results clamp to zero so they never seed tomorrow's opening.
    """
    d = {k: int(v or 0) for k, v in deltas.items()}
    get = d.get

    raw_full = (
        opening_full
        + get("full_purchase", 0)
        + get("refilled", 0)
        - get("full_cylinder_sales", 0)
        - get("gas_sales", 0)
        - get("transfer_gas", 0)
        + get("received_gas", 0)
    )
    closing_full = max(0, raw_full)

    raw_empty = (
        opening_full
        + opening_empty
        + get("full_purchase", 0)
        + get("empty_purchase", 0)
        - get("full_cylinder_sales", 0)
        - get("empty_cylinder_sales", 0)
        - get("deposits", 0)
        + get("returns", 0)
        - get("transfer_empty", 0)
        + get("received_empty", 0)
        - closing_full
    )
    closing_empty = max(0, raw_empty)

    return ClosingBalance(
        closing_full=closing_full,
        closing_empty=closing_empty,
        raw_full=raw_full,
        raw_empty=raw_empty,
    )


def clamp_warnings(product_key: str, balance: ClosingBalance) -> list:
    warnings = []
    if balance.raw_full < 0:
        warnings.append(ReconciliationWarning(
            code=WARN_NEGATIVE_BALANCE_CLAMPED,
            message=f"closing full computed as {balance.raw_full}, stored as 0",
            product_key=product_key,
        ))
    if balance.raw_empty < 0:
        warnings.append(ReconciliationWarning(
            code=WARN_NEGATIVE_BALANCE_CLAMPED,
            message=f"closing empty computed as {balance.raw_empty}, stored as 0",
            product_key=product_key,
        ))
    return warnings
