"""
HTTP surface tests: auth, role checks and error-to-status mapping.
"""

from conftest import login, PASSWORD


def _plan_payload(category_id, **overrides):
    payload = {
        "name": "Football Monthly",
        "price_cents": 10000,
        "duration_value": 1,
        "duration_unit": "months",
        "max_sessions": 2,
        "sport_category_ids": [category_id],
        "discounts": [{"code": "SAVE10", "percentage": 10}],
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.json["checks"]["database"]["status"] == "healthy"


def test_requires_token(client):
    assert client.get('/api/plans').status_code == 401
    assert client.get('/api/plans', headers={'Authorization': 'Bearer nope'}).status_code == 401


def test_register_login_me_logout(client):
    response = client.post('/api/auth/register', json={
        "name": "Nina New", "email": "Nina@Academy.test", "password": PASSWORD,
    })
    assert response.status_code == 201
    assert response.json["user"]["role"] == "student"
    assert response.json["user"]["email"] == "nina@academy.test"

    duplicate = client.post('/api/auth/register', json={
        "name": "Nina Again", "email": "nina@academy.test", "password": PASSWORD,
    })
    assert duplicate.status_code == 409

    headers = login(client, "nina@academy.test")
    assert client.get('/api/auth/me', headers=headers).json["user"]["name"] == "Nina New"

    assert client.post('/api/auth/logout', headers=headers).status_code == 200
    assert client.get('/api/auth/me', headers=headers).status_code == 401


def test_coach_registration_needs_admin_approval(client, admin, student):
    registered = client.post('/api/auth/register', json={
        "name": "Cora Coach", "email": "cora@academy.test", "password": PASSWORD, "role": "coach",
    })
    assert registered.status_code == 201
    assert registered.json["user"]["approved"] is False
    coach_id = registered.json["user"]["id"]

    pending_login = client.post('/api/auth/login', json={"email": "cora@academy.test", "password": PASSWORD})
    assert pending_login.status_code == 401

    assert client.post('/api/auth/register', json={
        "name": "Eve", "email": "eve@academy.test", "password": PASSWORD, "role": "admin",
    }).status_code == 400

    student_headers = login(client, student.email)
    assert client.post(f'/api/auth/users/{coach_id}/approve', headers=student_headers).status_code == 403

    admin_headers = login(client, admin.email)
    pending = client.get('/api/auth/users/pending', headers=admin_headers).json["users"]
    assert [u["id"] for u in pending] == [coach_id]

    approved = client.post(f'/api/auth/users/{coach_id}/approve', headers=admin_headers)
    assert approved.json["user"]["approved"] is True
    login(client, "cora@academy.test")


def test_weak_password_and_bad_login(client, student):
    weak = client.post('/api/auth/register', json={"name": "W", "email": "w@academy.test", "password": "short"})
    assert weak.status_code == 400

    bad = client.post('/api/auth/login', json={"email": student.email, "password": "Wrong12345"})
    assert bad.status_code == 401


def test_plan_admin_crud(client, admin, category):
    headers = login(client, admin.email)

    created = client.post('/api/plans', json=_plan_payload(category.id), headers=headers)
    assert created.status_code == 201, created.json
    plan_id = created.json["id"]
    assert created.json["created_by_user_id"] == admin.id

    quote = client.get(f'/api/plans/{plan_id}/price?code=SAVE10', headers=headers)
    assert quote.json["price"] == {"amount_cents": 9000, "currency": "USD"}
    assert quote.json["discount_valid"] is True

    patched = client.patch(f'/api/plans/{plan_id}', json={"price_cents": 12000}, headers=headers)
    assert patched.status_code == 200
    assert patched.json["price"]["amount_cents"] == 12000

    assert client.patch(f'/api/plans/{plan_id}', json={"price_cents": -1}, headers=headers).status_code == 400
    assert client.patch(f'/api/plans/{plan_id}', json={"version_id": 9}, headers=headers).status_code == 400

    deleted = client.delete(f'/api/plans/{plan_id}', headers=headers)
    assert deleted.json == {"deleted": True, "archived": False}
    assert client.get(f'/api/plans/{plan_id}', headers=headers).status_code == 404


def test_plan_validation_errors(client, admin, category):
    headers = login(client, admin.email)

    missing = client.post('/api/plans', json={"name": "Nothing else"}, headers=headers)
    assert missing.status_code == 400

    client.post('/api/plans', json=_plan_payload(category.id), headers=headers)
    duplicate = client.post('/api/plans', json=_plan_payload(category.id), headers=headers)
    assert duplicate.status_code == 400


def test_students_cannot_manage_catalog(client, student, category):
    headers = login(client, student.email)

    assert client.post('/api/plans', json=_plan_payload(category.id), headers=headers).status_code == 403
    assert client.post('/api/catalog/categories', json={"name": "Judo"}, headers=headers).status_code == 403
    assert client.get('/api/catalog/categories', headers=headers).json["categories"][0]["name"] == "Football"


def test_subscription_flow_over_http(client, admin, coach, student, make_plan):
    plan = make_plan(max_sessions=1)
    student_headers = login(client, student.email)
    coach_headers = login(client, coach.email)
    admin_headers = login(client, admin.email)

    created = client.post('/api/subscriptions', json={"plan_id": plan.id, "payment_method": "cash"}, headers=student_headers)
    assert created.status_code == 201, created.json
    subscription_id = created.json["id"]
    assert created.json["student_id"] == student.id
    assert created.json["status"] == "pending"

    not_active = client.post(f'/api/subscriptions/{subscription_id}/deduct-session', headers=coach_headers)
    assert not_active.status_code == 409

    paid = client.post(
        f'/api/subscriptions/{subscription_id}/payments',
        json={"amount_cents": 10000, "payment_method": "cash"},
        headers=coach_headers,
    )
    assert paid.status_code == 201
    assert paid.json["subscription"]["status"] == "active"
    trx_id = paid.json["transaction"]["transaction_id"]

    first = client.post(f'/api/subscriptions/{subscription_id}/deduct-session', headers=coach_headers)
    assert first.status_code == 200
    assert first.json["remaining_sessions"] == 0

    exhausted = client.post(f'/api/subscriptions/{subscription_id}/deduct-session', headers=coach_headers)
    assert exhausted.status_code == 409
    assert exhausted.json["code"] == "entitlement_exhausted"

    details = client.get(f'/api/subscriptions/{subscription_id}?details=true', headers=student_headers)
    assert details.json["plan"]["id"] == plan.id
    assert len(details.json["transactions"]) == 1

    too_much = client.post(f'/api/transactions/{trx_id}/refund', json={"amount_cents": 20000}, headers=admin_headers)
    assert too_much.status_code == 400

    refunded = client.post(f'/api/transactions/{trx_id}/refund', json={"reason": "Moved"}, headers=admin_headers)
    assert refunded.status_code == 201
    assert refunded.json["original"]["status"] == "refunded"

    again = client.post(f'/api/transactions/{trx_id}/refund', headers=admin_headers)
    assert again.status_code == 409

    invoice = client.post(f'/api/transactions/{trx_id}/invoice', headers=student_headers)
    assert invoice.json["invoice_id"] == f"INV-{trx_id}"

    cancelled = client.post(f'/api/subscriptions/{subscription_id}/cancel', json={"reason": "Done"}, headers=student_headers)
    assert cancelled.status_code == 200
    assert client.post(f'/api/subscriptions/{subscription_id}/cancel', headers=student_headers).status_code == 409


def test_students_only_see_their_own(client, student, other_student, make_plan, make_subscription):
    subscription = make_subscription(make_plan())
    other_headers = login(client, other_student.email)

    assert client.get(f'/api/subscriptions/{subscription.id}', headers=other_headers).status_code == 403
    assert client.post(f'/api/subscriptions/{subscription.id}/cancel', headers=other_headers).status_code == 403
    assert client.get('/api/subscriptions', headers=other_headers).json["subscriptions"] == []

    forged = client.post('/api/subscriptions', json={
        "student_id": student.id, "plan_id": subscription.plan_id, "payment_method": "cash",
    }, headers=other_headers)
    assert forged.status_code == 403


def test_students_cannot_record_payments_or_deduct(client, student, make_plan, make_subscription):
    subscription = make_subscription(make_plan())
    headers = login(client, student.email)

    payment = client.post(f'/api/subscriptions/{subscription.id}/payments',
                          json={"amount_cents": 100, "payment_method": "cash"}, headers=headers)
    assert payment.status_code == 403
    assert client.post(f'/api/subscriptions/{subscription.id}/deduct-session', headers=headers).status_code == 403


def test_unknown_ids_are_404(client, admin):
    headers = login(client, admin.email)

    assert client.get('/api/subscriptions/999', headers=headers).status_code == 404
    assert client.post('/api/subscriptions/999/deduct-session', headers=headers).status_code == 404
    assert client.get('/api/transactions/TRX-0-0', headers=headers).status_code == 404
    assert client.post('/api/transactions/TRX-0-0/refund', headers=headers).status_code == 404


def test_attendance_and_stats_over_http(client, coach, student, make_active_subscription):
    subscription = make_active_subscription(max_sessions=1)
    headers = login(client, coach.email)

    recorded = client.post('/api/attendance', json={
        "student_id": student.id,
        "subscription_id": subscription.id,
        "session_date": "2024-03-04T17:00:00Z",
        "status": "present",
    }, headers=headers)
    assert recorded.status_code == 201
    assert recorded.json["session_deducted"] is True

    denied = client.post('/api/attendance', json={
        "student_id": student.id,
        "subscription_id": subscription.id,
        "session_date": "2024-03-06T17:00:00Z",
        "status": "present",
    }, headers=headers)
    assert denied.status_code == 409
    assert denied.json["code"] == "entitlement_exhausted"

    stats = client.get(f'/api/attendance/students/{student.id}/stats', headers=headers)
    assert stats.json["total_sessions"] == 1


def test_notifications_and_reports(client, admin, student, make_active_subscription):
    make_active_subscription()
    student_headers = login(client, student.email)
    admin_headers = login(client, admin.email)

    notes = client.get('/api/notifications', headers=student_headers).json["notifications"]
    assert [n["type"] for n in notes] == ["subscription_activated"]

    read = client.post(f'/api/notifications/{notes[0]["id"]}/read', headers=student_headers)
    assert read.json["read"] is True

    assert client.get('/api/reports/revenue', headers=student_headers).status_code == 403
    revenue = client.get('/api/reports/revenue?days=7', headers=admin_headers)
    assert revenue.json["totals"]["gross_cents"] == 10000
    assert client.get('/api/reports/subscriptions', headers=admin_headers).json["total_active"] == 1
