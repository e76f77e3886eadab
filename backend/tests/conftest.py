"""
Pytest fixtures for the sale & inventory engine tests.

Every test gets its own app on a fresh in-memory SQLite database, an
organization with one store, an admin and a seller, a cash payment method and
two products whose opening stock was booked through the ledger.
"""

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.models import Organization, PaymentMethod, Store, User
from retailpos.models.auth import ROLE_ADMIN, ROLE_SELLER
from retailpos.services.catalog_service import create_product
from retailpos.services.engine import SaleEngine
from retailpos.services.ledger_service import StockLedger
from retailpos.services.repository import Repository


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'TX_RETRY_BACKOFF_SECONDS': 0,
}


@pytest.fixture(scope='function')
def app():
    """Create application with a fresh schema for each test."""
    app = create_app(TEST_CONFIG)

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
    return db.session


@pytest.fixture(scope='function')
def engine(app):
    """SaleEngine bound to the app's session and config."""
    return SaleEngine()


@pytest.fixture(scope='function')
def org(db_session):
    org = Organization(name="Acme Retail", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def other_org(db_session):
    org = Organization(name="Beta Stores", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store(db_session, org):
    store = Store(org_id=org.id, name="Main Street", sale_number_prefix="S1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def admin(db_session, org, store):
    user = User(org_id=org.id, store_id=store.id, username="admin", role=ROLE_ADMIN)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def seller(db_session, org, store):
    user = User(org_id=org.id, store_id=store.id, username="seller", role=ROLE_SELLER)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cash(db_session, org):
    method = PaymentMethod(org_id=org.id, name="Cash", type="CASH")
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def make_product(db_session, org, admin):
    """Factory: product with opening stock booked as an IN movement."""
    def _make(name="Widget", sale_price="5.00", opening_stock=10, min_stock=0, organization=None):
        repo = Repository(db_session)
        product = create_product(
            repo,
            StockLedger(repo),
            organization_id=(organization or org).id,
            name=name,
            sale_price=sale_price,
            cost_price="2.00",
            min_stock=min_stock,
            opening_stock=opening_stock,
            actor_id=admin.id,
        )
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def widget(make_product):
    """stock=10, price=5.00"""
    return make_product("Widget", "5.00", 10)


@pytest.fixture(scope='function')
def gadget(make_product):
    """stock=3, price=12.50"""
    return make_product("Gadget", "12.50", 3, min_stock=2)


@pytest.fixture(scope='function')
def pending_sale(engine, org, admin, store, widget):
    """Scenario 1: three widgets, no payment."""
    result = engine.create_sale(org.id, admin.id, store.id, [{"product_id": widget.id, "quantity": 3}])
    assert result.ok, result.message
    return result.data
