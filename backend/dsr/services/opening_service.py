# Overview: Resolve each product's opening balance for a business day.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from ..models import OPENING_SOURCE_CARRY_FORWARD, OPENING_SOURCE_COLD_START, OPENING_SOURCE_FROZEN
from .catalog_service import ZERO_AVAILABILITY
from .data_quality import ReconciliationWarning, WARN_AMBIGUOUS_OPENING
"""
Opening resolution (authoritative), first match wins per (date, product):

1. frozen:        the date's record has opening_source set -> verbatim.
                  Legacy rows (opening_source NULL) with a non-zero opening
                  are taken verbatim too and stamped 'frozen'.
2. carry_forward: the previous date's record exists -> its closing.
3. cold_start:    the live inventory snapshot.

A legacy row with a zero opening is re-derived through 2/3; when a previous
record exists an ambiguous_opening warning is attached. The note stays on the
row for as long as the opening it describes does, so recomputes leave it be.

Rebuild mode re-seeds rows whose opening_source is carry_forward from the
previous closing. No other path rewrites a resolved opening.
"""


@dataclass(frozen=True)
class ResolvedOpening:
    opening_full: int
    opening_empty: int
    source: str
    # True when the stored opening must be (re)written
    needs_write: bool
    warnings: tuple = field(default=())

    def as_opening(self) -> tuple:
        return self.opening_full, self.opening_empty, self.source


def _is_legacy(rec) -> bool:
    return rec is not None and not rec.opening_source


def _opening_notes(rec) -> tuple:
    """ambiguous_opening notes already stored on a resolved row."""
    return tuple(
        ReconciliationWarning.from_dict(w)
        for w in (getattr(rec, "warnings", None) or [])
        if isinstance(w, dict) and w.get("code") == WARN_AMBIGUOUS_OPENING
    )


def resolve_opening(day: date, key: str, *, current, previous, availability, reseed_carry_forward: bool = False) -> ResolvedOpening:
    """
    current/previous: stored records for day and day-1 (or None).
    availability: live snapshot for the product (or None).
    """
    if current is not None and current.opening_source:
        if (
            reseed_carry_forward
            and current.opening_source == OPENING_SOURCE_CARRY_FORWARD
            and previous is not None
        ):
            full, empty = previous.closing_full, previous.closing_empty
            changed = (full, empty) != (current.opening_full, current.opening_empty)
            return ResolvedOpening(
                opening_full=full,
                opening_empty=empty,
                source=OPENING_SOURCE_CARRY_FORWARD,
                needs_write=changed,
                warnings=() if changed else _opening_notes(current),
            )
        return ResolvedOpening(
            opening_full=current.opening_full,
            opening_empty=current.opening_empty,
            source=current.opening_source,
            needs_write=False,
            warnings=_opening_notes(current),
        )

    if _is_legacy(current) and (current.opening_full or current.opening_empty):
        return ResolvedOpening(
            opening_full=current.opening_full,
            opening_empty=current.opening_empty,
            source=OPENING_SOURCE_FROZEN,
            needs_write=True,
        )

    if previous is not None:
        warnings = ()
        if _is_legacy(current):
            current_app.logger.warning(
                "Legacy zero opening for %r on %s; carrying forward %s/%s from %s",
                key, day, previous.closing_full, previous.closing_empty, previous.business_date,
            )
            warnings = (ReconciliationWarning(
                code=WARN_AMBIGUOUS_OPENING,
                message=(
                    "stored opening was 0/0 without a resolution flag; "
                    f"carried forward {previous.closing_full}/{previous.closing_empty} from the previous day"
                ),
                product_key=key,
            ),)
        return ResolvedOpening(
            opening_full=previous.closing_full,
            opening_empty=previous.closing_empty,
            source=OPENING_SOURCE_CARRY_FORWARD,
            needs_write=True,
            warnings=warnings,
        )

    snapshot = availability or ZERO_AVAILABILITY
    return ResolvedOpening(
        opening_full=snapshot.available_full,
        opening_empty=snapshot.available_empty,
        source=OPENING_SOURCE_COLD_START,
        needs_write=True,
    )


def resolve_openings(day: date, product_keys, *, existing: dict, previous: dict, availability: dict,
                     reseed_carry_forward: bool = False) -> dict:
    """{product_key: ResolvedOpening} for every key."""
    return {
        key: resolve_opening(
            day,
            key,
            current=existing.get(key),
            previous=previous.get(key),
            availability=availability.get(key),
            reseed_carry_forward=reseed_carry_forward,
        )
        for key in product_keys
    }
