from datetime import timedelta

from conftest import auth_headers
from memberpay.models.audit_log import AuditLog
from memberpay.models.donation import Donation
from memberpay.models.event_order import EventOrder
from memberpay.models.payment import Payment
from memberpay.models.pending_payment import PendingPayment
from memberpay.utils.clock import utcnow


def paid_donation(client):
    data = client.post(
        "/api/donations",
        json={"donor_name": "Baraka Mwangi", "donor_email": "baraka@example.com", "amount": "800"},
    ).json()
    client.post(f"/api/payments/mock/{data['transaction_id']}/complete")
    return data


def test_refund_paid_donation(client, db, admin):
    data = paid_donation(client)

    response = client.post(
        f"/api/admin/payments/{data['transaction_id']}/refund",
        json={"reason": "Duplicate gift"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "refunded"
    db.expire_all()
    payment = db.query(Payment).one()
    assert payment.refunded_by == admin.id
    assert payment.refund_reason == "Duplicate gift"
    assert payment.refunded_at is not None
    assert db.query(Donation).one().status == "refunded"
    assert db.query(AuditLog).filter(AuditLog.action == "payment.refunded").count() == 1


def test_refund_event_order(client, db, admin, event):
    data = client.post(f"/api/events/{event.id}/orders", json={"quantity": 1, "email": "g@example.com"}).json()
    client.post(f"/api/payments/mock/{data['transaction_id']}/complete")

    client.post(
        f"/api/admin/payments/{data['transaction_id']}/refund",
        json={"reason": "Event moved"},
        headers=auth_headers(admin),
    )

    db.expire_all()
    assert db.query(EventOrder).one().status == "refunded"


def test_only_paid_payments_can_be_refunded(client, admin):
    data = client.post(
        "/api/donations",
        json={"donor_name": "A", "donor_email": "a@example.com", "amount": "100"},
    ).json()

    response = client.post(
        f"/api/admin/payments/{data['transaction_id']}/refund",
        json={"reason": "n/a"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 409


def test_refund_requires_admin(client, user):
    response = client.post(
        "/api/admin/payments/anything/refund", json={"reason": "x"}, headers=auth_headers(user),
    )
    assert response.status_code == 403


def test_refund_unknown_payment(client, admin):
    response = client.post(
        "/api/admin/payments/missing/refund", json={"reason": "x"}, headers=auth_headers(admin),
    )
    assert response.status_code == 404


def test_expire_stale_checkouts(client, db, admin):
    stale = client.post(
        "/api/donations",
        json={"donor_name": "A", "donor_email": "a@example.com", "amount": "100"},
    ).json()
    fresh = client.post(
        "/api/donations",
        json={"donor_name": "B", "donor_email": "b@example.com", "amount": "100"},
    ).json()
    pending = db.query(PendingPayment).filter(PendingPayment.tracking_id == stale["transaction_id"]).one()
    pending.expires_at = utcnow() - timedelta(hours=2)
    db.commit()

    response = client.post("/api/admin/payments/expire-stale", headers=auth_headers(admin))

    assert response.json() == {"success": True, "expired": 1}
    db.expire_all()
    statuses = {d.reference: d.status for d in db.query(Donation)}
    assert statuses[stale["donation"]["reference"]] == "failed"
    assert statuses[fresh["donation"]["reference"]] == "pending"
    expired = db.query(Payment).filter(Payment.external_reference == stale["transaction_id"]).one()
    assert expired.status == "cancelled"


def test_payment_history(client, db, user, plan):
    initiated = client.post(
        "/api/subscriptions/initiate", json={"plan_id": plan.id}, headers=auth_headers(user),
    ).json()
    client.post(f"/api/payments/mock/{initiated['transaction_id']}/complete")

    response = client.get("/api/payments/history", headers=auth_headers(user))

    assert response.status_code == 200
    history = response.json()
    assert len(history) == 1
    assert history[0]["payable_type"] == "subscription"
    assert history[0]["status"] == "paid"


def test_plans_listing(client, plan, other_plan):
    response = client.get("/api/plans")

    assert response.status_code == 200
    assert [p["slug"] for p in response.json()] == ["community", "professional"]
    assert client.get(f"/api/plans/{plan.id}").json()["name"] == "Professional"
    assert client.get("/api/plans/999").status_code == 404
    assert client.get("/api/plans/community").json()["id"] == other_plan.id
    assert client.get("/api/plans/unknown").json()["error"] == "not_found"
