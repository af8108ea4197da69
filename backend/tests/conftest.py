"""
Pytest fixtures for academy backend tests.

Provides the in-memory application, a per-test table wipe, the test client and
factories for users, plans and subscriptions.
"""

import itertools

import pytest

from academy import create_app
from academy.extensions import db
from academy.models.auth import ROLE_ADMIN, ROLE_COACH, ROLE_STUDENT
from academy.services import auth_service, catalog_service, subscription_service, transaction_service


PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Clear all data but keep schema."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def admin(db_session):
    return auth_service.create_user(name="Ada Admin", email="admin@academy.test", password=PASSWORD, role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def coach(db_session):
    return auth_service.create_user(
        name="Carl Coach", email="coach@academy.test", password=PASSWORD, role=ROLE_COACH, approved=True
    )


@pytest.fixture(scope='function')
def student(db_session):
    return auth_service.create_user(name="Sam Student", email="sam@academy.test", password=PASSWORD, role=ROLE_STUDENT)


@pytest.fixture(scope='function')
def other_student(db_session):
    return auth_service.create_user(name="Olga Other", email="olga@academy.test", password=PASSWORD, role=ROLE_STUDENT)


@pytest.fixture(scope='function')
def category(db_session):
    return catalog_service.create_category("Football")


@pytest.fixture(scope='function')
def make_plan(category):
    """Factory: make_plan(**overrides) -> SubscriptionPlan (100.00 USD, 1 month, 4 sessions)."""
    counter = itertools.count(1)

    def _make_plan(**overrides):
        patch = {
            "name": f"Plan {next(counter)}",
            "price_cents": 10000,
            "duration_value": 1,
            "duration_unit": "months",
            "max_sessions": 4,
            "sport_category_ids": [category.id],
        }
        patch.update(overrides)
        return catalog_service.create_plan(patch=patch)

    return _make_plan


@pytest.fixture(scope='function')
def make_subscription(student):
    """Factory: make_subscription(plan, **kwargs) -> pending Subscription for `student`."""
    def _make_subscription(plan, **kwargs):
        kwargs.setdefault("student_id", student.id)
        kwargs.setdefault("payment_method", "cash")
        return subscription_service.create_subscription(plan_id=plan.id, **kwargs)

    return _make_subscription


@pytest.fixture(scope='function')
def make_active_subscription(make_plan, make_subscription):
    """Factory: pending subscription paid in full, so it is active."""
    def _make_active(now=None, **plan_overrides):
        plan = make_plan(**plan_overrides)
        subscription = make_subscription(plan, now=now)
        transaction_service.record_payment(subscription.id, plan.price_cents, "cash", now=now)
        return subscription

    return _make_active


def login(client, email: str, password: str = PASSWORD) -> dict:
    """Log in and return Authorization headers."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    assert response.status_code == 200, response.json
    return {'Authorization': f"Bearer {response.json['token']}"}
