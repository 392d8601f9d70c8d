"""
Pytest fixtures for Tradebook backend tests.

Provides an in-memory database, default roles and users, auth headers and
an ExecutionContext wired to a recording notifier.
"""

from datetime import date
from decimal import Decimal

import pytest

from tradebook import create_app
from tradebook.extensions import db
from tradebook.models import Product, TaxRule
from tradebook.services import auth_service, inventory_service, permission_service
from tradebook.services.unit_of_work import ExecutionContext, run_in_tx

PASSWORD = "Password123!"


class RecordingNotifier:
    """Collects (product_id, new_stock) pairs instead of fanning them out."""

    def __init__(self):
        self.events = []

    def publish(self, product_id, new_stock):
        self.events.append((product_id, new_stock))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'TX_RETRY_BACKOFF_SECONDS': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()

    app.extensions["stock_events"].shutdown()


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    """Lowest bcrypt cost keeps user fixtures fast."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before each test (schema kept)."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.extensions["permission_cache"].invalidate()

    yield db.session

    db.session.rollback()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ctx(db_session, notifier):
    """Service-level context: no principal, recording notifier."""
    return ExecutionContext(notifier=notifier)


@pytest.fixture
def seed_roles(db_session):
    permission_service.initialize_roles()


def _make_user(username, role_name):
    return auth_service.create_user(
        username=username,
        email=f"{username}@tradebook.test",
        password=PASSWORD,
        role_name=role_name,
    )


@pytest.fixture
def admin_user(seed_roles):
    return _make_user("admin_t", "admin")


@pytest.fixture
def manager_user(seed_roles):
    return _make_user("manager_t", "manager")


@pytest.fixture
def staff_user(seed_roles):
    return _make_user("staff_t", "staff")


def login(client, username, password=PASSWORD) -> dict:
    """Log in through the API and return Authorization headers."""
    resp = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return {'Authorization': f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def admin_headers(client, admin_user):
    return login(client, admin_user.username)


@pytest.fixture
def manager_headers(client, manager_user):
    return login(client, manager_user.username)


@pytest.fixture
def staff_headers(client, staff_user):
    return login(client, staff_user.username)


def make_product(sku="SKU-001", name="Widget", price="10.00", stock=0, ctx=None) -> Product:
    """Insert a product directly; seed stock through the ledger when stock > 0."""
    product = Product(sku=sku, name=name, price=Decimal(price), current_stock=0, is_active=True)
    db.session.add(product)
    db.session.commit()
    if stock:
        run_in_tx(ctx or ExecutionContext(), lambda tx: inventory_service.adjust_stock(tx, product.id, stock))
    return product


@pytest.fixture
def product(db_session):
    """Product with 10 units on hand, price 10.00."""
    return make_product(stock=10)


@pytest.fixture
def tax_rules(db_session):
    """Default rates effective since 2020: VAT_INLAND 10%, VAT_INTL 0%, FCT 5%."""
    rules = {}
    for tax_type, rate in (("VAT_INLAND", "0.1000"), ("VAT_INTL", "0.0000"), ("FCT", "0.0500")):
        rule = TaxRule(tax_type=tax_type, rate=Decimal(rate), effective_from=date(2020, 1, 1))
        db.session.add(rule)
        rules[tax_type] = rule
    db.session.commit()
    return rules


@pytest.fixture
def product_factory(db_session):
    return make_product


@pytest.fixture
def login_as(client):
    return lambda username, password=PASSWORD: login(client, username, password)
