"""
Pytest fixtures for the daily stock backend tests.

Provides the application (file-backed SQLite so adapter worker threads see
the same data), a clean database per test, a test client, and small
factories for catalog rows and feed rows.

Business timezone in tests is Asia/Dubai (UTC+4, no DST): business day
2026-10-18 runs from 2026-10-17T20:00Z to 2026-10-18T20:00Z.
"""

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest

from dsr import create_app
from dsr.extensions import db
from dsr.models import (
    Product,
    InventoryItem,
    DailyStockRecord,
)

TZ = "Asia/Dubai"


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("dsr") / "test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DSR_TIMEZONE': TZ,
        'DSR_CUTOFF_TIME': '23:55',
        'DSR_SOURCE_TIMEOUT_SECONDS': 5.0,
        'DSR_SOURCE_MAX_WORKERS': 5,
        'DSR_FULL_CYLINDER_TRANSFER_POLICY': 'both',
        'DSR_SCHEDULER_ENABLED': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def local_ts(day: date, hh: int, mm: int = 0) -> datetime:
    """Business-local wall time -> UTC-naive storage timestamp."""
    local = datetime.combine(day, time(hh, mm), tzinfo=ZoneInfo(TZ))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def make_product(db_session):
    """Catalog product plus its live inventory snapshot."""
    def _make(name, *, full=0, empty=0, category="cylinder", is_active=True):
        product = Product(name=name, category=category, is_active=is_active)
        db_session.add(product)
        db_session.flush()
        db_session.add(InventoryItem(
            product_id=product.id,
            available_full=full,
            available_empty=empty,
            current_stock=full + empty,
        ))
        db_session.commit()
        return product
    return _make


@pytest.fixture
def add_rows(db_session):
    """Insert feed rows and commit: add_rows(DailySale(...), DailyRefill(...))."""
    def _add(*rows):
        db_session.add_all(rows)
        db_session.commit()
        return rows
    return _add


@pytest.fixture
def stored_record(db_session):
    """A stored ledger row, as an earlier run (or the legacy import) left it."""
    def _make(day, name, *, opening=(0, 0), closing=(0, 0), opening_source="frozen", holder=""):
        rec = DailyStockRecord(
            business_date=day,
            holder_key=holder,
            product_key=" ".join(name.split()).lower(),
            product_display_name=name,
            opening_full=opening[0],
            opening_empty=opening[1],
            opening_source=opening_source,
            closing_full=closing[0],
            closing_empty=closing[1],
            is_partial=False,
            warnings=[],
        )
        db_session.add(rec)
        db_session.commit()
        return rec
    return _make

