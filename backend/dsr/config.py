# backend/dsr/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/dsr.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///dsr.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business day boundaries are computed in this timezone
    DSR_TIMEZONE = os.environ.get("DSR_TIMEZONE", "Asia/Dubai")

    # End-of-business-day cutoff (HH:MM, local to DSR_TIMEZONE)
    DSR_CUTOFF_TIME = os.environ.get("DSR_CUTOFF_TIME", "23:55")

    # Per-adapter read timeout, counted from when that adapter starts running
    # (not from when it was queued). A source that overruns contributes zero.
    DSR_SOURCE_TIMEOUT_SECONDS = float(os.environ.get("DSR_SOURCE_TIMEOUT_SECONDS", "5"))
    DSR_SOURCE_MAX_WORKERS = int(os.environ.get("DSR_SOURCE_MAX_WORKERS", "5"))

    # both | empty | gas  (see DESIGN.md, full cylinder transfers)
    DSR_FULL_CYLINDER_TRANSFER_POLICY = os.environ.get("DSR_FULL_CYLINDER_TRANSFER_POLICY", "both")

    DSR_SCHEDULER_ENABLED = _env_bool("DSR_SCHEDULER_ENABLED", False)
    DSR_SCHEDULER_POLL_SECONDS = int(os.environ.get("DSR_SCHEDULER_POLL_SECONDS", "60"))
