"""
Pytest fixtures for shop floor backend tests.

Provides test database setup, users per role, order/item builders, a
QuickBooks token manager backed by httpx.MockTransport, and test client.
"""

from datetime import timedelta

import httpx
import pytest
from shopfloor import create_app
from shopfloor.extensions import db
from shopfloor.models import (
    Customer, Item, Order, OrderItem, QuickbooksToken, Role, Station, User, UserRole, DEFAULT_ROLES,
)
from shopfloor.services.concurrency import RetryPolicy
from shopfloor.services.production_service import STATION_STAGES
from shopfloor.services.qbo_client import QuickBooksClient
from shopfloor.services.qbo_token_service import QuickBooksTokenManager
from shopfloor.services.sync_log import get_sync_log
from shopfloor.time_utils import utcnow


WEBHOOK_VERIFIER = "test-webhook-verifier"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'QBO_CLIENT_ID': 'test-client-id',
        'QBO_CLIENT_SECRET': 'test-client-secret',
        'QBO_WEBHOOK_VERIFIER_TOKEN': WEBHOOK_VERIFIER,
        'PRINT_BATCH_SIZE': 4,
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
        get_sync_log().clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def roles(db_session):
    """Default roles, keyed by name."""
    created = {}
    for name, description in DEFAULT_ROLES.items():
        role = Role(name=name, description=description)
        db_session.add(role)
        created[name] = role
    db_session.commit()
    return created


def _make_user(db_session, roles, username, *role_names, is_active=True):
    user = User(username=username, email=f"{username}@shopfloor.local", is_active=is_active)
    db_session.add(user)
    db_session.commit()
    for role_name in role_names:
        db_session.add(UserRole(user_id=user.id, role_id=roles[role_name].id))
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, roles):
    return _make_user(db_session, roles, "admin", "Admin")


@pytest.fixture(scope='function')
def office_user(db_session, roles):
    return _make_user(db_session, roles, "office", "Office Employee")


@pytest.fixture(scope='function')
def warehouse_user(db_session, roles):
    return _make_user(db_session, roles, "warehouse", "Warehouse Staff")


@pytest.fixture(scope='function')
def second_warehouse_user(db_session, roles):
    return _make_user(db_session, roles, "warehouse2", "Warehouse Staff")


@pytest.fixture(scope='function')
def super_admin_user(db_session, roles):
    return _make_user(db_session, roles, "owner", "Super Admin")


@pytest.fixture(scope='function')
def stations(db_session):
    """Default stations, keyed by stage."""
    created = {}
    for name, stage in STATION_STAGES.items():
        station = Station(name=name, stage=stage, barcode=f"STATION-{stage}", is_active=True)
        db_session.add(station)
        created[stage] = station
    db_session.commit()
    return created


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(name="Acme Furniture", email="orders@acme.test", customer_type="RETAILER")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def item(db_session):
    """One catalog item shared by every order in a test."""
    item = Item(name="Sofa Cushion", quickbooks_item_id="ITEM-1", retail_price_cents=4500)
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def make_order(db_session, customer, item):
    """
    Build an order with items.

    lines: list of dicts overriding OrderItem columns, e.g.
        [{"quickbooks_order_line_id": "L-100", "is_production": True}]
    """
    def _make(*, status="PENDING", number=None, lines=()):
        order = Order(customer_id=customer.id, status=status, sales_order_number=number)
        db_session.add(order)
        db_session.flush()
        for line in lines:
            values = {
                "item_id": item.id,
                "quantity": 1,
                "unit_price_cents": 4500,
                "status": "NOT_STARTED_PRODUCTION",
                "is_production": True,
                "is_verified": True,
            }
            values.update(line)
            db_session.add(OrderItem(order_id=order.id, **values))
        db_session.commit()
        db_session.refresh(order)
        return order
    return _make


@pytest.fixture(scope='function')
def approved_order(make_order):
    return make_order(status="APPROVED", number="SO-1001", lines=[{}])


@pytest.fixture(scope='function')
def production_item(approved_order):
    return approved_order.items[0]


def no_sleep(_seconds):
    return None


class MockIntuit:
    """
    Records requests and answers them from a handler.

    handler(request) -> httpx.Response; default answers every call with 500.
    """

    def __init__(self, handler=None):
        self.requests = []
        self.handler = handler or (lambda request: httpx.Response(500))

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)

    def client(self):
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture(scope='function')
def make_token_manager(app):
    def _make(handler=None, *, attempts=3):
        intuit = MockIntuit(handler)
        manager = QuickBooksTokenManager(
            client_id="test-client-id",
            client_secret="test-client-secret",
            environment="sandbox",
            retry_policy=RetryPolicy(max_attempts=attempts, backoff_base=0, sleep=no_sleep),
            http_client=intuit.client(),
        )
        return manager, intuit
    return _make


@pytest.fixture(scope='function')
def stored_token(db_session):
    """A connected company whose access token is comfortably fresh."""
    def _store(*, access_expires_in=3600, refresh_expires_in=86400, realm_id="9130350000000001"):
        now = utcnow()
        token = QuickbooksToken(
            realm_id=realm_id,
            access_token="access-old",
            refresh_token="refresh-old",
            token_type="bearer",
            access_token_expires_at=now + timedelta(seconds=access_expires_in),
            refresh_token_expires_at=now + timedelta(seconds=refresh_expires_in),
            connected_at=now,
        )
        db_session.add(token)
        db_session.commit()
        return token
    return _store


def auth_headers(user) -> dict:
    """Headers the upstream auth provider forwards for an authenticated user."""
    return {'X-Authenticated-User-Id': str(user.id)}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture(scope='function')
def office_headers(office_user):
    return auth_headers(office_user)


@pytest.fixture(scope='function')
def warehouse_headers(warehouse_user):
    return auth_headers(warehouse_user)


@pytest.fixture(scope='function')
def super_admin_headers(super_admin_user):
    return auth_headers(super_admin_user)


class FakeQuickBooks:
    """
    In-memory QuickBooks company answering entity reads and paged queries.

    entities: {("Customer", "42"): {...}}; unknown ids answer 404 with a Fault.
    """

    def __init__(self):
        self.entities = {}

    def add(self, entity, payload):
        self.entities[(entity, str(payload["Id"]))] = payload
        return payload

    def __call__(self, request):
        parts = request.url.path.strip("/").split("/")
        # v3 / company / <realm> / <entity> [/ <id>]
        resource = parts[3]
        if resource == "query":
            statement = request.url.params["query"]
            entity = statement.split()[3]
            rows = [p for (name, _), p in self.entities.items() if name == entity]
            return httpx.Response(200, json={"QueryResponse": {entity: rows}})
        entity = next((name for (name, _) in self.entities if name.lower() == resource), resource.capitalize())
        payload = self.entities.get((entity, parts[4]))
        if payload is None:
            return httpx.Response(400, json={"Fault": {"Error": [{
                "Message": "Object Not Found",
                "Detail": "Object Not Found : Something you're trying to use has been made inactive or is not found",
            }]}})
        return httpx.Response(200, json={entity: payload})


@pytest.fixture(scope='function')
def qbo(make_token_manager, stored_token):
    """A connected QuickBooks company plus a client that reads from it."""
    company = FakeQuickBooks()
    manager, intuit = make_token_manager(company)
    stored_token()
    company.client = QuickBooksClient(manager)
    company.requests = intuit.requests
    return company
