from decimal import Decimal

from conftest import auth_headers
from memberpay.models.audit_log import AuditLog
from memberpay.models.donation import Donation
from memberpay.models.payment import Payment
from memberpay.models.pending_payment import PendingPayment


def donate(client, headers=None, **body):
    body.setdefault("donor_name", "Achieng Otieno")
    body.setdefault("donor_email", "achieng@example.com")
    body.setdefault("amount", "1500")
    response = client.post("/api/donations", json=body, headers=headers or {})
    assert response.status_code == 200, response.text
    return response.json()


def test_donation_completed_twice_issues_one_receipt(client, db):
    data = donate(client)
    payment = db.query(Payment).one()
    assert payment.order_reference.startswith(f"DON-{data['donation']['id']}-")

    for _ in range(2):
        response = client.post(
            "/api/payments/webhook/mock",
            json={"OrderMerchantReference": payment.order_reference, "status": "completed"},
        )
        assert response.status_code == 200

    db.expire_all()
    donation = db.query(Donation).one()
    assert donation.status == "paid"
    assert donation.receipt_number.startswith("RCP-")
    assert donation.payment_date is not None
    assert donation.payment_id == payment.id
    assert db.query(Payment).filter(Payment.status == "paid").count() == 1
    assert db.query(AuditLog).filter(AuditLog.action == "payment.paid").count() == 1


def test_donation_defaults(client):
    data = donate(client)

    assert data["donation"]["reference"].startswith("DON-")
    assert len(data["donation"]["reference"]) == 16
    assert data["donation"]["currency"] == "KES"
    assert data["donation"]["status"] == "pending"
    assert data["transaction_id"].startswith("MOCK-DONATION-")


def test_donation_with_supplied_reference(client):
    data = donate(client, reference="GALA-2026-001")

    assert data["donation"]["reference"] == "GALA-2026-001"
    assert client.get("/api/donations/GALA-2026-001").json()["status"] == "pending"


def test_duplicate_reference_conflicts(client):
    donate(client, reference="GALA-2026-002")
    response = client.post(
        "/api/donations",
        json={"donor_name": "A", "donor_email": "a@example.com", "amount": "10", "reference": "GALA-2026-002"},
    )
    assert response.status_code == 409


def test_donation_validation(client):
    response = client.post(
        "/api/donations",
        json={"donor_name": "A", "donor_email": "not-an-email", "amount": "0"},
    )
    assert response.status_code == 422


def test_failed_donation(client, db):
    data = donate(client)

    client.post(
        f"/api/payments/mock/{data['transaction_id']}/complete",
        json={"phone": "254708888888"},
    )

    db.expire_all()
    assert db.query(Donation).one().status == "failed"
    payment = db.query(Payment).one()
    assert payment.status == "failed"
    assert payment.failure_reason == "Insufficient funds"


def test_cancel_pending_donation(client, db):
    data = donate(client)

    response = client.delete(f"/api/donations/{data['donation']['reference']}")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    db.expire_all()
    assert db.query(Payment).one().status == "cancelled"
    assert db.query(PendingPayment).one().status == "cancelled"


def test_cannot_cancel_paid_donation(client):
    data = donate(client)
    client.post(f"/api/payments/mock/{data['transaction_id']}/complete")

    response = client.delete(f"/api/donations/{data['donation']['reference']}")

    assert response.status_code == 409


def test_members_cannot_cancel_other_members_donations(client, db, user, admin):
    data = donate(client, headers=auth_headers(user))

    assert client.delete(f"/api/donations/{data['donation']['reference']}").status_code == 403
    assert client.delete(
        f"/api/donations/{data['donation']['reference']}", headers=auth_headers(admin),
    ).status_code == 200


def test_mock_checkout_page(client):
    data = donate(client, amount="250")

    response = client.get(f"/api/payments/mock/checkout/{data['transaction_id']}")

    assert response.status_code == 200
    body = response.json()
    assert body["payable_type"] == "donation"
    assert Decimal(str(body["amount"])) == Decimal("250")
    assert body["status"] == "pending"


def test_mock_cancel(client, db):
    data = donate(client)

    response = client.post(f"/api/payments/mock/{data['transaction_id']}/cancel")

    assert response.json()["outcome"] == "cancelled"
    db.expire_all()
    assert db.query(Donation).one().status == "cancelled"
