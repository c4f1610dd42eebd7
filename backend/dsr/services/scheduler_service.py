# Overview: Unattended end-of-day cutoff: claim once per business day, then reconcile.

from __future__ import annotations

from datetime import date, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dsr.extensions import db
from dsr.models import ReconciliationRun
from dsr.time_utils import business_now, parse_cutoff_time
from .reconciliation_service import (
    PersistenceFailure,
    ReconciliationError,
    RUN_STATUS_FAILED,
    RUN_STATUS_RUNNING,
    TRIGGER_CUTOFF,
    finish_run,
    reconcile_day,
    reconcile_holders,
)
"""
Cutoff guard (authoritative)

- tick(now) is cheap and can be called as often as wanted (APScheduler
  interval job, cron running `flask dsr cutoff`, or both).
- Before the cutoff time (business timezone) it does nothing.
- At/after it, the first caller inserts a ReconciliationRun with
  cutoff_key=<business date>. The unique constraint makes exactly one caller
  win across threads and processes; the rest see IntegrityError and return.
- A claim whose run failed is released and can be claimed again.
"""

JOB_ID = "dsr-cutoff"


def claim_cutoff(day: date) -> ReconciliationRun | None:
    """Claim the cutoff for `day`. Returns the new run, or None if already claimed."""
    key = day.isoformat()
    try:
        released = (
            db.session.query(ReconciliationRun)
            .filter(ReconciliationRun.cutoff_key == key, ReconciliationRun.status == RUN_STATUS_FAILED)
            .update({ReconciliationRun.cutoff_key: None}, synchronize_session=False)
        )
        if released:
            current_app.logger.warning("Releasing failed cutoff claim for %s", key)

        run = ReconciliationRun(
            trigger=TRIGGER_CUTOFF,
            business_date=day,
            status=RUN_STATUS_RUNNING,
            warnings=[],
            cutoff_key=key,
        )
        db.session.add(run)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to claim cutoff for %s", key)
        raise PersistenceFailure(f"could not claim cutoff for {key}") from exc
    return run


def tick(now: datetime | None = None, *, adapters=None):
    """
    Fire the cutoff reconciliation if it is due and unclaimed.

    Returns the ReconciliationResult when this call ran it, otherwise None.
    """
    cfg = current_app.config
    tz_name = cfg.get("DSR_TIMEZONE", "Asia/Dubai")
    cutoff = parse_cutoff_time(cfg.get("DSR_CUTOFF_TIME", "23:55"))

    local = business_now(tz_name, now)
    if local.time() < cutoff:
        return None

    day = local.date()
    run = claim_cutoff(day)
    if run is None:
        current_app.logger.debug("Cutoff for %s already claimed", day)
        return None

    current_app.logger.info("Cutoff reached for %s (%s %s); reconciling", day, cutoff.strftime("%H:%M"), tz_name)
    try:
        result = reconcile_day(day, trigger=TRIGGER_CUTOFF, adapters=adapters, run=run)
    except ReconciliationError as exc:
        finish_run(run, status=RUN_STATUS_FAILED, error=str(exc))
        raise

    # Holder ledgers follow the warehouse; each one fails on its own
    try:
        reconcile_holders(day, trigger=TRIGGER_CUTOFF, adapters=adapters)
    except PersistenceFailure:
        current_app.logger.exception("Holder ledgers skipped for %s", day)
    return result


class CutoffScheduler:
    """
    APScheduler interval job that polls tick().

    Jobs run on the scheduler's worker threads, so each poll pushes its own
    app context.
    """

    def __init__(self, app, *, poll_seconds: int | None = None):
        self.app = app
        self.poll_seconds = int(poll_seconds or app.config.get("DSR_SCHEDULER_POLL_SECONDS", 60))
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def start(self) -> None:
        self.scheduler.add_job(
            func=self._poll,
            trigger="interval",
            seconds=self.poll_seconds,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.app.logger.info("Cutoff scheduler started (every %ss)", self.poll_seconds)

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            self.app.logger.info("Cutoff scheduler shutdown complete")

    def _poll(self) -> None:
        with self.app.app_context():
            try:
                tick()
            except (PersistenceFailure, ReconciliationError):
                # Claim is marked failed; the next poll reclaims it
                self.app.logger.exception("Cutoff reconciliation failed")


def init_scheduler(app) -> CutoffScheduler | None:
    """Start the poller when DSR_SCHEDULER_ENABLED is set."""
    if not app.config.get("DSR_SCHEDULER_ENABLED"):
        return None
    cutoff_scheduler = CutoffScheduler(app)
    cutoff_scheduler.start()
    app.extensions["dsr_scheduler"] = cutoff_scheduler
    return cutoff_scheduler
