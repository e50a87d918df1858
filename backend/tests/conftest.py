"""
Pytest fixtures for unitpos backend tests.

Provides an in-memory database, test client, and seed fixtures for catalog
rows and unit pools.
"""

from datetime import timedelta

import pytest

from unitpos import create_app
from unitpos.extensions import db
from unitpos.models import Product, ProductVariant, Location, Customer, StockUnit, Order
from unitpos.services.capabilities import EXTENSION_KEY, ReservationExpirySupport
from unitpos.services.catalog_service import CACHE_EXTENSION_KEY
from unitpos.time_utils import utcnow


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    # The probe is exercised in test_capabilities against dedicated engines
    'RESERVATION_EXPIRY_SUPPORT': True,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
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

        app.extensions[EXTENSION_KEY] = ReservationExpirySupport(forced=True)
        app.extensions[CACHE_EXTENSION_KEY].invalidate()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def expiry_unsupported(app, db_session):
    """Run the test as if the schema had no reservation_expires_at column."""
    app.extensions[EXTENSION_KEY] = ReservationExpirySupport(forced=False)
    yield
    app.extensions[EXTENSION_KEY] = ReservationExpirySupport(forced=True)


@pytest.fixture(scope='function')
def variant(db_session):
    product = Product(name="Split AC 1.5T")
    db_session.add(product)
    db_session.flush()
    variant = ProductVariant(product_id=product.id, sku="AC-15-INV", variant_name="1.5 Ton Inverter", price_cents=4_599_900)
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def location(db_session):
    location = Location(code="MAIN", name="Main Showroom")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def other_location(db_session):
    location = Location(code="WH1", name="Warehouse 1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Asha Rao", phone="9800000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def order(db_session, customer):
    order = Order(customer_id=customer.id, total_cents=0)
    db_session.add(order)
    db_session.commit()
    return order


@pytest.fixture(scope='function')
def make_units(db_session, variant, location):
    """
    Factory: insert `count` available units with strictly increasing created_at.

    Returns the unit ids, oldest first.
    """
    def _make(count, prefix="U", variant_id=None, location_id=None, status="available"):
        base = utcnow() - timedelta(hours=1)
        units = []
        for i in range(count):
            unit = StockUnit(
                variant_id=variant_id or variant.id,
                location_id=location_id or location.id,
                unit_code=f"{prefix}{i + 1:04d}",
                status=status,
                created_at=base + timedelta(seconds=i),
                updated_at=base + timedelta(seconds=i),
            )
            db_session.add(unit)
            units.append(unit)
        db_session.commit()
        return [unit.id for unit in units]

    return _make


@pytest.fixture(scope='function')
def pool(make_units):
    """Five available units for (variant, location)."""
    return make_units(5)
