# Overview: Recoverable data-quality findings attached to reconciliation results.

from __future__ import annotations

from dataclasses import dataclass, asdict

WARN_SOURCE_UNAVAILABLE = "source_unavailable"
WARN_AMBIGUOUS_OPENING = "ambiguous_opening"
WARN_NEGATIVE_BALANCE_CLAMPED = "negative_balance_clamped"
WARN_UNKNOWN_PRODUCT = "unknown_product"
WARN_CARRY_FORWARD_DRIFT = "carry_forward_drift"


@dataclass(frozen=True)
class ReconciliationWarning:
    """
    A finding that does not stop the run.

    product_key is None for run-wide findings (an unreachable source
    affects every product).
    """
    code: str
    message: str
    product_key: str | None = None
    source: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "ReconciliationWarning":
        return cls(
            code=data["code"],
            message=data.get("message", ""),
            product_key=data.get("product_key"),
            source=data.get("source"),
        )


def dedupe_warnings(warnings) -> list:
    """Keep first occurrence order; identical findings collapse to one."""
    seen = set()
    out = []
    for w in warnings:
        if w in seen:
            continue
        seen.add(w)
        out.append(w)
    return out
