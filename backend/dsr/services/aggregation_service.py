# Overview: Fan out to source adapters and fold their events into per-product deltas.

from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date

from flask import current_app

from dsr.models import WAREHOUSE
from .data_quality import (
    ReconciliationWarning,
    WARN_SOURCE_UNAVAILABLE,
    WARN_UNKNOWN_PRODUCT,
)
from .source_adapters import AUTHORITATIVE_SOURCES, SourceUnavailable
from .stock_events import FULL_TRANSFER_BOTH, empty_deltas, event_deltas


@dataclass
class SourceBatch:
    """What one adapter produced for a day; available=False means zero contribution."""
    source: str
    events: list = field(default_factory=list)
    available: bool = True
    error: str | None = None


@dataclass
class AggregateResult:
    deltas: dict
    warnings: list
    unavailable_sources: list

    @property
    def is_partial(self) -> bool:
        return bool(self.unavailable_sources)


def _outcome(adapter, future, day: date) -> SourceBatch:
    try:
        events = future.result()
    except SourceUnavailable as exc:
        current_app.logger.warning("Source %s unavailable for %s: %s", adapter.name, day, exc.reason)
        return SourceBatch(adapter.name, available=False, error=exc.reason)
    except Exception as exc:
        current_app.logger.exception("Source %s failed for %s", adapter.name, day)
        return SourceBatch(adapter.name, available=False, error=exc.__class__.__name__)
    return SourceBatch(adapter.name, events=events)


def fetch_batches(day: date, adapters, *, tz_name: str, timeout: float, max_workers: int,
                  holder: str = WAREHOUSE) -> list[SourceBatch]:
    """
    Run every adapter for `day` on a bounded thread pool.

    Each worker pushes its own app context (and so gets its own session).
    Every adapter gets `timeout` seconds from the moment it starts running,
    so adapters queued behind a small pool are not charged for the wait. A
    queued adapter that cannot start within one timeout per pool wave is
    given up on. A timed-out or failing adapter yields an unavailable batch
    and the others are unaffected. Batches come back in adapter order.
    """
    app = current_app._get_current_object()
    adapters = list(adapters)
    timeout = float(timeout)
    workers = max(1, int(max_workers))
    started = {}

    def _run(index, adapter):
        started[index] = time.monotonic()
        with app.app_context():
            return adapter.fetch_events(day, tz_name=tz_name, holder=holder)

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dsr-source")
    futures = {executor.submit(_run, index, adapter): index for index, adapter in enumerate(adapters)}
    waves = -(-len(adapters) // workers)
    start_by = time.monotonic() + timeout * max(1, waves)

    def _deadline(index):
        begun = started.get(index)
        return start_by if begun is None else begun + timeout

    batches = {}
    try:
        pending = set(futures)
        while pending:
            wait_for = min(_deadline(futures[f]) for f in pending) - time.monotonic()
            done, pending = wait(pending, timeout=max(0.0, wait_for), return_when=FIRST_COMPLETED)
            for future in done:
                index = futures[future]
                batches[index] = _outcome(adapters[index], future, day)

            now = time.monotonic()
            for future in list(pending):
                index = futures[future]
                if now < _deadline(index):
                    continue
                pending.discard(future)
                adapter = adapters[index]
                if index in started:
                    reason = f"timed out after {timeout}s"
                else:
                    reason = "never started; source pool exhausted"
                current_app.logger.warning("Source %s %s for %s", adapter.name, reason, day)
                batches[index] = SourceBatch(adapter.name, available=False, error=reason)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return [batches[index] for index in range(len(adapters))]


def aggregate(batches, catalog_keys, *, full_transfer_policy: str = FULL_TRANSFER_BOTH,
              authoritative=None) -> AggregateResult:
    """
    Fold source batches into {product_key: deltas}.

    - A contribution counts only when its family is owned by the batch's source.
    - Every catalog product gets a delta set, zeros when nothing happened.
    - Events for keys outside the catalog are dropped with one warning per
      (key, source).
    - Summation only, so batch order does not matter.
    """
    authoritative = AUTHORITATIVE_SOURCES if authoritative is None else authoritative
    deltas = {key: empty_deltas() for key in catalog_keys}
    warnings = []
    unavailable = []
    unknown = {}

    for batch in sorted(batches, key=lambda b: b.source):
        if not batch.available:
            unavailable.append(batch.source)
            warnings.append(ReconciliationWarning(
                code=WARN_SOURCE_UNAVAILABLE,
                message=f"{batch.source} contributed nothing: {batch.error or 'unavailable'}",
                source=batch.source,
            ))
            continue

        for event in batch.events:
            family = event.family
            if authoritative.get(family) != batch.source:
                current_app.logger.debug(
                    "Dropping %s contribution from non-authoritative source %s (%s)",
                    family, batch.source, event.source_ref,
                )
                continue

            key = event.product_key
            if key not in deltas:
                unknown[(key, batch.source)] = unknown.get((key, batch.source), 0) + 1
                continue

            for name, quantity in event_deltas(event, full_transfer_policy=full_transfer_policy).items():
                deltas[key][name] += quantity

    for (key, source), count in sorted(unknown.items()):
        current_app.logger.warning("Dropped %d %s event(s) for unknown product %r", count, source, key)
        warnings.append(ReconciliationWarning(
            code=WARN_UNKNOWN_PRODUCT,
            message=f"{count} event(s) for a product outside the catalog were ignored",
            product_key=key,
            source=source,
        ))

    return AggregateResult(deltas=deltas, warnings=warnings, unavailable_sources=unavailable)
