"""
Pytest fixtures for stallstock backend tests.

Provides test database setup, site/stall/stock fixtures, and test client.
"""

import pytest
from stallstock import create_app
from stallstock.extensions import db
from stallstock.actor import Actor
from stallstock.models import StockItem
from stallstock.services import site_service, stock_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_ATTEMPTS': 3,
        'STOCK_RETRY_BACKOFF': 0,
    })

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

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def actor():
    return Actor(user_id="staff-1", name="Alice")


@pytest.fixture(scope='function')
def site(db_session):
    """Create the main site."""
    return site_service.create_site(name="Riverside Market", location="North Gate")


@pytest.fixture(scope='function')
def other_site(db_session):
    """Create a second, unrelated site."""
    return site_service.create_site(name="Harbour Fair")


@pytest.fixture(scope='function')
def stall_a(site):
    return site_service.create_stall(site.id, "Front Counter", "Retail Counter")


@pytest.fixture(scope='function')
def stall_b(site):
    return site_service.create_stall(site.id, "Back Booth", "Pop-up Booth")


@pytest.fixture(scope='function')
def other_stall(other_site):
    return site_service.create_stall(other_site.id, "Pier Kiosk", "Information Kiosk")


@pytest.fixture(scope='function')
def master_item(site, actor):
    """Master record with 100 units at the main site."""
    result = stock_service.create_master_item(
        site.id,
        actor,
        name="Rice",
        category="Food",
        unit="kg",
        quantity=100,
        price_cents=250,
        cost_price_cents=120,
        low_stock_threshold=5,
    )
    return result.items[0]


@pytest.fixture(scope='function')
def other_master_item(other_site, actor):
    result = stock_service.create_master_item(
        other_site.id, actor, name="Rice", category="Food", quantity=40, price_cents=250
    )
    return result.items[0]


@pytest.fixture(scope='function')
def quantity_of(db_session):
    """Committed quantity of a stock record by id."""
    def _quantity(item_id: int) -> int:
        item = db_session.get(StockItem, item_id)
        db_session.refresh(item)
        return item.quantity
    return _quantity


@pytest.fixture(scope='function')
def actor_headers():
    """Actor identity headers for mutating API calls."""
    return {"X-Actor-Id": "staff-1", "X-Actor-Name": "Alice"}
