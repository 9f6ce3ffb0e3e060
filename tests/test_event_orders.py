from decimal import Decimal

from conftest import auth_headers, make_user
from memberpay.models.event_order import EventOrder
from memberpay.models.payment import Payment
from memberpay.models.promo_code import PromoCode
from memberpay.services.event_order_service import promo_discount


def order(client, event, headers=None, **body):
    body.setdefault("quantity", 1)
    body.setdefault("email", "guest@example.com")
    return client.post(f"/api/events/{event.id}/orders", json=body, headers=headers or {})


def complete(client, transaction_id):
    return client.post(f"/api/payments/mock/{transaction_id}/complete")


def test_over_capacity_order_is_rejected_before_payment(client, db, event):
    response = order(client, event, quantity=6)

    assert response.status_code == 422
    assert "5 spots remaining" in response.json()["message"]
    assert db.query(Payment).count() == 0
    assert db.query(EventOrder).count() == 0


def test_pending_orders_hold_seats(client, db, event):
    assert order(client, event, quantity=3).status_code == 200

    response = order(client, event, quantity=3)

    assert response.status_code == 422
    assert response.json()["errors"]["available"] == 2


def test_failed_orders_release_seats(client, event):
    first = order(client, event, quantity=5).json()
    client.post("/api/payments/webhook/mock", json={"OrderTrackingId": first["transaction_id"], "status": "failed"})

    assert order(client, event, quantity=5).status_code == 200


def test_order_pricing_with_promo_and_subscriber_discount(client, db, event, promo, user, plan):
    initiated = client.post(
        "/api/subscriptions/initiate", json={"plan_id": plan.id}, headers=auth_headers(user),
    ).json()
    complete(client, initiated["transaction_id"])

    response = order(client, event, headers=auth_headers(user), quantity=2, promo_code="early20")

    assert response.status_code == 200
    placed = response.json()["order"]
    assert Decimal(placed["original_amount"]) == Decimal("2000.00")
    assert Decimal(placed["promo_discount_amount"]) == Decimal("400.00")
    # 10% member discount on the 1600 left after the promo
    assert Decimal(placed["subscriber_discount_amount"]) == Decimal("160.00")
    assert Decimal(placed["total_amount"]) == Decimal("1440.00")
    assert placed["reference"].startswith("ORD-")
    assert placed["qr_code_token"].startswith("TKT-")


def test_paid_order_gets_receipt(client, db, event, promo):
    data = order(client, event, promo_code="EARLY20").json()

    response = complete(client, data["transaction_id"])

    assert response.json()["outcome"] == "paid"
    db.expire_all()
    placed = db.query(EventOrder).one()
    assert placed.status == "paid"
    assert placed.purchased_at is not None
    assert placed.receipt_number.startswith("TKT-")
    assert db.query(PromoCode).one().times_used == 1


def test_fully_discounted_order_is_paid_without_gateway(client, db, event):
    db.add(PromoCode(code="FREEPASS", type="fixed", value=Decimal("5000")))
    db.commit()

    response = order(client, event, promo_code="FREEPASS")

    assert response.status_code == 200
    body = response.json()
    assert body["transaction_id"] is None
    assert body["order"]["status"] == "paid"
    assert Decimal(body["order"]["total_amount"]) == Decimal("0.00")
    assert db.query(Payment).count() == 0


def test_invalid_promo_code(client, event):
    response = order(client, event, promo_code="NOPE")
    assert response.status_code == 422


def test_exhausted_promo_code(client, db, event, promo):
    promo.times_used = promo.max_uses
    db.commit()

    assert order(client, event, promo_code="EARLY20").status_code == 422


def test_promo_limited_to_other_events(client, db, event):
    db.add(PromoCode(code="OTHER", type="percent", value=Decimal("50"), applicable_event_ids=[event.id + 1]))
    db.commit()

    assert order(client, event, promo_code="OTHER").status_code == 422


def test_unpublished_event(client, db, event):
    event.status = "draft"
    db.commit()

    assert order(client, event).status_code == 422


def test_free_event_does_not_sell_tickets(client, db, event):
    event.is_paid = False
    db.commit()

    assert order(client, event).status_code == 422


def test_guest_needs_email(client, event):
    response = client.post(f"/api/events/{event.id}/orders", json={"quantity": 1})
    assert response.status_code == 422


def test_get_order_by_reference(client, event):
    data = order(client, event).json()

    response = client.get(f"/api/event-orders/{data['order']['reference']}")

    assert response.status_code == 200
    assert response.json()["status"] == "pending"
    assert client.get("/api/event-orders/ORD-MISSING").status_code == 404


def test_check_in_is_one_way(client, event, admin):
    data = order(client, event).json()
    token = data["order"]["qr_code_token"]
    headers = auth_headers(admin)

    unpaid = client.post("/api/event-orders/check-in", json={"qr_code_token": token}, headers=headers)
    assert unpaid.status_code == 422

    complete(client, data["transaction_id"])
    first = client.post("/api/event-orders/check-in", json={"qr_code_token": token}, headers=headers)
    assert first.status_code == 200
    assert first.json()["checked_in_at"] is not None

    second = client.post("/api/event-orders/check-in", json={"qr_code_token": token}, headers=headers)
    assert second.status_code == 409


def test_check_in_requires_admin(client, db, event):
    member = make_user(db, email="door@example.com")
    response = client.post(
        "/api/event-orders/check-in", json={"qr_code_token": "TKT-X"}, headers=auth_headers(member),
    )
    assert response.status_code == 403


def test_promo_discount_is_capped():
    promo = PromoCode(code="BIG", type="fixed", value=Decimal("900"))
    assert promo_discount(promo, Decimal("500.00")) == Decimal("500.00")

    percent = PromoCode(code="THIRD", type="percent", value=Decimal("33.333"))
    assert promo_discount(percent, Decimal("100.00")) == Decimal("33.33")
