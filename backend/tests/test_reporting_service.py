import pytest

from academy.services import reporting_service, subscription_service, transaction_service
from academy.validation import ValidationError
from academy.time_utils import utcnow


def test_revenue_report_nets_refunds(make_active_subscription):
    subscription = make_active_subscription(name="Football Monthly")
    payment = transaction_service.list_transactions(subscription_id=subscription.id)[0]
    transaction_service.process_refund(payment.transaction_id, amount_cents=4000)

    report = reporting_service.revenue_report(days=7)

    assert report["totals"] == {
        "gross_cents": 10000,
        "refunds_cents": 4000,
        "net_cents": 6000,
        "payment_count": 1,
        "refund_count": 1,
    }
    assert [r["plan_name"] for r in report["rows"]] == ["Football Monthly"]
    assert report["rows"][0]["date"] == utcnow().date().isoformat()


def test_revenue_report_ignores_pending_entries(make_plan, make_subscription):
    subscription = make_subscription(make_plan())
    transaction_service.create_transaction(
        subscription.id, {"type": "payment", "amount_cents": 5000, "payment_method": "cash"}
    )

    assert reporting_service.revenue_report()["totals"]["gross_cents"] == 0


def test_revenue_report_day_range():
    with pytest.raises(ValidationError):
        reporting_service.revenue_report(days=0)
    with pytest.raises(ValidationError):
        reporting_service.revenue_report(days=1000)


def test_active_subscriptions_report(make_plan, make_subscription, make_active_subscription):
    short = make_active_subscription(name="Ten Day Camp", duration_value=10, duration_unit="days")
    make_active_subscription(name="Annual", duration_value=1, duration_unit="years")
    cancelled = make_active_subscription(name="Cancelled Plan")
    subscription_service.cancel_subscription(cancelled.id)
    make_subscription(make_plan(name="Pending Plan"))

    report = reporting_service.active_subscriptions_report()

    assert report["total_active"] == 2
    assert {p["plan_name"]: p["active_count"] for p in report["by_plan"]} == {"Annual": 1, "Ten Day Camp": 1}
    assert report["expiring_soon"] == 1
    assert report["by_status"] == {"pending": 1, "active": 2, "cancelled": 1, "expired": 0}
    assert short.plan.name == "Ten Day Camp"
