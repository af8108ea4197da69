from datetime import timedelta

from academy.models import User
from academy.services import auth_service, subscription_service
from academy.time_utils import utcnow


def test_plans_list(app, make_plan):
    make_plan(name="Swimming Term")
    runner = app.test_cli_runner()

    result = runner.invoke(args=["plans", "list"])

    assert result.exit_code == 0
    assert "Swimming Term" in result.output
    assert "100.00 USD" in result.output


def test_plans_list_empty(app):
    result = app.test_cli_runner().invoke(args=["plans", "list"])
    assert "No plans found." in result.output


def test_expire_sweep(app, make_active_subscription):
    past = utcnow() - timedelta(days=60)
    overdue = make_active_subscription(now=past, duration_value=10, duration_unit="days")

    result = app.test_cli_runner().invoke(args=["subscriptions", "expire"])

    assert result.exit_code == 0
    assert "Expired 1 subscription(s)" in result.output
    assert subscription_service.get_subscription(overdue.id).status == "expired"


def test_create_admin(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        "system", "create-admin", "--name", "Head Coach",
        "--email", "head@academy.test", "--password", "Password123",
    ])

    assert "PASS Created admin" in result.output
    assert db_session.query(User).filter_by(email="head@academy.test").one().role == "admin"


def test_create_admin_weak_password(app):
    result = app.test_cli_runner().invoke(args=[
        "system", "create-admin", "--name", "X", "--email", "x@academy.test", "--password", "short",
    ])
    assert "FAIL Password validation failed" in result.output


def test_approve_user(app, db_session):
    coach = auth_service.create_user(
        name="Pending Coach", email="pending@academy.test", password="Password123", role="coach"
    )
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "approve-user", "--email", "Pending@Academy.test"])
    assert "PASS Approved coach" in result.output
    assert db_session.get(User, coach.id).approved is True

    again = runner.invoke(args=["system", "approve-user", "--email", "pending@academy.test"])
    assert "SKIP" in again.output
