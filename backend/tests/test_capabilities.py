"""
Reservation expiry capability tests.

The probe runs against dedicated engines here; the shared test app pins
support to True. A separate app on a file database with the pre-expiry
stock_units layout checks that every workflow keeps running without the
column.
"""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError

from unitpos import create_app
from unitpos.errors import StorageError
from unitpos.extensions import db
from unitpos.services import (
    availability_service,
    bill_service,
    catalog_service,
    reservation_service,
    unit_service,
)
from unitpos.services.capabilities import (
    EXTENSION_KEY,
    ReservationExpirySupport,
    call_with_expiry_fallback,
    expiry_supported,
    is_unknown_column_error,
)


LEGACY_STOCK_UNITS_DDL = """
CREATE TABLE stock_units (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    variant_id INTEGER NOT NULL,
    location_id INTEGER NOT NULL,
    unit_code VARCHAR(64) NOT NULL UNIQUE,
    status VARCHAR(16) NOT NULL,
    reservation_key VARCHAR(64),
    bill_id INTEGER,
    order_id INTEGER,
    sold_to_customer_id INTEGER,
    sold_at DATETIME,
    notes TEXT,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""

CURRENT_STOCK_UNITS_DDL = "CREATE TABLE stock_units (id INTEGER PRIMARY KEY, reservation_expires_at DATETIME)"


class _PgUndefinedColumn(Exception):
    pgcode = "42703"


def _unknown_column(message="no such column: reservation_expires_at"):
    return OperationalError("SELECT reservation_expires_at FROM stock_units", {}, Exception(message))


class _FailingEngine:
    """Counts connection attempts; every attempt fails."""

    def __init__(self, error):
        self.error = error
        self.connects = 0

    def connect(self):
        self.connects += 1
        raise self.error


def _engine_with(ddl):
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        conn.execute(text(ddl))
    return engine


class TestUnknownColumnDetection:
    def test_sqlite_messages(self):
        assert is_unknown_column_error(_unknown_column())
        assert is_unknown_column_error(_unknown_column("table stock_units has no column named reservation_expires_at"))

    def test_postgres_sqlstate(self):
        exc = OperationalError("SELECT 1", {}, _PgUndefinedColumn("boom"))
        assert is_unknown_column_error(exc)

    def test_other_errors(self):
        assert not is_unknown_column_error(_unknown_column("database is locked"))
        assert not is_unknown_column_error(ValueError("relation does not exist"))


class TestProbe:
    def test_column_present(self, app):
        support = ReservationExpirySupport()
        assert not support.probed
        assert support.is_supported(engine=_engine_with(CURRENT_STOCK_UNITS_DDL)) is True
        assert support.probed

    def test_column_missing(self, app):
        support = ReservationExpirySupport()
        assert support.is_supported(engine=_engine_with("CREATE TABLE stock_units (id INTEGER PRIMARY KEY)")) is False

    def test_any_probe_failure_means_unsupported(self, app):
        support = ReservationExpirySupport()
        assert support.is_supported(engine=_FailingEngine(_unknown_column("disk I/O error"))) is False

    def test_answer_is_memoized(self, app):
        engine = _FailingEngine(_unknown_column())
        support = ReservationExpirySupport()
        support.is_supported(engine=engine)
        support.is_supported(engine=engine)
        assert engine.connects == 1

    def test_forced_answer_skips_probe(self, app):
        engine = _FailingEngine(_unknown_column())
        assert ReservationExpirySupport(forced=True).is_supported(engine=engine) is True
        assert ReservationExpirySupport(forced=False).is_supported(engine=engine) is False
        assert engine.connects == 0

    def test_mark_unsupported_and_reset(self, app):
        support = ReservationExpirySupport(forced=True)
        support.mark_unsupported()
        assert support.is_supported() is False
        support.reset()
        assert support.is_supported() is True


class TestExpiryFallback:
    def test_reruns_without_expiry_on_unknown_column(self, db_session):
        calls = []

        def operation(with_expiry):
            calls.append(with_expiry)
            if with_expiry:
                raise StorageError("update failed") from _unknown_column()
            return "done"

        assert call_with_expiry_fallback(operation) == "done"
        assert calls == [True, False]
        assert expiry_supported() is False

    def test_other_storage_errors_propagate(self, db_session):
        calls = []

        def operation(with_expiry):
            calls.append(with_expiry)
            raise StorageError("locked") from _unknown_column("database is locked")

        with pytest.raises(StorageError):
            call_with_expiry_fallback(operation)
        assert calls == [True]
        assert expiry_supported() is True


@pytest.fixture
def legacy_app(tmp_path):
    """App on a database whose stock_units predates reservation_expires_at."""
    legacy = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'legacy.sqlite3'}",
        "RESERVATION_EXPIRY_SUPPORT": None,
    })
    with legacy.app_context():
        db.create_all()
        db.session.execute(text("DROP TABLE stock_units"))
        db.session.execute(text(LEGACY_STOCK_UNITS_DDL))
        db.session.commit()
        yield legacy
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def legacy_pool(legacy_app):
    product = catalog_service.create_product("Window AC")
    variant = catalog_service.create_variant(product.id, "WAC-10", "1 Ton")
    location = catalog_service.create_location("main", "Main Showroom")
    ids = [unit_service.create_unit(variant.id, location.id, f"L-{i:03d}").id for i in range(4)]
    return variant.id, location.id, ids


class TestLegacySchema:
    def test_probe_reports_unsupported(self, legacy_app):
        assert legacy_app.extensions[EXTENSION_KEY].is_supported() is False

    def test_workflows_run_without_expiry(self, legacy_app, legacy_pool):
        variant_id, location_id, ids = legacy_pool

        result = reservation_service.reserve(variant_id, location_id, 3, "cart-1")
        assert result.reserved == 3
        assert result.expires_at is None

        details = reservation_service.get_reservation_details("cart-1")
        assert details["unit_count"] == 3
        assert details["expires_at"] is None
        assert all("reservation_expires_at" in unit for unit in details["units"])

        assert reservation_service.sweep_expired() == 0
        assert reservation_service.sweep_stale(6) == 0

        metrics = availability_service.get_availability_metrics([(variant_id, location_id)])
        assert metrics[(variant_id, location_id)].held == 3

        order = bill_service.create_order()
        sold = reservation_service.fulfill("cart-1", order_id=order.id)
        assert len(sold) == 3
        assert reservation_service.reverse_to_available(order.id) == 3
        assert unit_service.count_units(variant_id, location_id, "available") == 4

    def test_counts_without_expiry_column(self, legacy_app, legacy_pool):
        variant_id, location_id, ids = legacy_pool
        reservation_service.reserve(variant_id, location_id, 1, "cart-1")

        assert unit_service.count_units(variant_id, location_id) == 4
        assert unit_service.count_units(variant_id, location_id, "reserved") == 1

        output = legacy_app.test_cli_runner().invoke(args=["system", "reset-db"], input="n\n")
        assert "WARN 4 stock units" in output.output

    def test_wrongly_forced_support_downgrades_mid_flight(self, legacy_app, legacy_pool):
        variant_id, location_id, ids = legacy_pool
        legacy_app.extensions[EXTENSION_KEY] = ReservationExpirySupport(forced=True)

        result = reservation_service.reserve(variant_id, location_id, 2, "cart-1")
        assert result.reserved == 2
        assert result.expires_at is None
        assert legacy_app.extensions[EXTENSION_KEY].is_supported() is False
        assert reservation_service.release("cart-1") == 2
