"""
CLI command tests.
"""

from datetime import timedelta

from unitpos.models import StockUnit
from unitpos.services import reservation_service
from unitpos.time_utils import utcnow


def test_sweep_releases_stale_holds(app, db_session, variant, location, pool):
    result = reservation_service.reserve(variant.id, location.id, 2, "cart-1")
    db_session.query(StockUnit).filter(StockUnit.id.in_(result.unit_ids)).update(
        {StockUnit.updated_at: utcnow() - timedelta(hours=12)}, synchronize_session=False
    )
    db_session.commit()

    output = app.test_cli_runner().invoke(args=["reservations", "sweep", "--stale-hours", "6"])
    assert output.exit_code == 0
    assert "Released 0 expired and 2 stale units" in output.output


def test_cleanup_keeps_listed_carts(app, db_session, variant, location, pool):
    reservation_service.reserve(variant.id, location.id, 1, "cart-1")
    reservation_service.reserve(variant.id, location.id, 1, "cart-2")

    output = app.test_cli_runner().invoke(args=["reservations", "cleanup", "--active", "cart-2"])
    assert output.exit_code == 0
    assert "Abandoned: 1" in output.output
    assert reservation_service.get_active_reservation_keys() == ["cart-2"]


def test_cleanup_without_active_list_keeps_carts(app, db_session, variant, location, pool):
    reservation_service.reserve(variant.id, location.id, 1, "cart-1")

    output = app.test_cli_runner().invoke(args=["reservations", "cleanup"])
    assert output.exit_code == 0
    assert reservation_service.get_active_reservation_keys() == ["cart-1"]


def test_probe(app, db_session):
    output = app.test_cli_runner().invoke(args=["reservations", "probe"])
    assert output.exit_code == 0
    assert "reservation_expires_at present" in output.output


def test_reset_db_requires_confirmation(app, db_session, pool):
    output = app.test_cli_runner().invoke(args=["system", "reset-db"], input="n\n")
    assert output.exit_code == 1
    assert "5 stock units" in output.output
    assert db_session.query(StockUnit).count() == 5


def test_reset_db_rebuilds_schema(app, db_session, pool):
    output = app.test_cli_runner().invoke(args=["system", "reset-db", "--yes"])
    assert output.exit_code == 0
    assert "Schema rebuilt (expiring holds)" in output.output
    assert db_session.query(StockUnit).count() == 0
