from decimal import Decimal

import pytest

from memberpay.models.donation import Donation
from memberpay.models.payment import Payment, PayableType
from memberpay.models.subscription import PlanSubscription
from memberpay.services import payable_resolver
from memberpay.services.payable_resolver import GenericActivationHandler, PayableResolver, register_payable
from memberpay.utils.errors import NotFoundError


@pytest.fixture
def registry(monkeypatch):
    monkeypatch.setattr(payable_resolver, "HANDLERS", dict(payable_resolver.HANDLERS))
    monkeypatch.setattr(payable_resolver, "PAYABLE_MODELS", dict(payable_resolver.PAYABLE_MODELS))


def pay_for(db, kind, payable_id, payer_id=None, amount="1000.00"):
    payment = Payment(
        payable_type=kind,
        payable_id=payable_id,
        payer_id=payer_id,
        gateway="mock",
        amount=Decimal(amount),
        currency="KES",
        order_reference=f"TEST-{kind.value}-{payable_id}",
    )
    db.add(payment)
    db.flush()
    return payment


def make_donation(db, reference="DON-GENERIC0001"):
    donation = Donation(
        donor_name="Achieng Otieno",
        donor_email="achieng@example.com",
        amount=Decimal("750.00"),
        reference=reference,
    )
    db.add(donation)
    db.flush()
    return donation


def test_registered_payable_without_handler_uses_generic(db, user, plan, registry):
    register_payable(PayableType.SUBSCRIPTION, PlanSubscription)
    subscription = PlanSubscription(user_id=user.id, plan_id=plan.id, status="payment_pending")
    db.add(subscription)
    db.flush()
    payment = pay_for(db, PayableType.SUBSCRIPTION, subscription.id, payer_id=user.id, amount="2500.00")

    resolver = PayableResolver(db)
    assert isinstance(resolver.handler_for(PayableType.SUBSCRIPTION), GenericActivationHandler)
    resolver.activate(payment)

    assert subscription.status == "active"
    assert user.subscription_status == "active"
    assert user.subscription_activated_at is not None
    assert user.last_payment_date is not None


def test_generic_handler_calls_payable_activate(db, monkeypatch):
    def activate(self):
        self.status = "confirmed"

    monkeypatch.setattr(Donation, "activate", activate, raising=False)
    donation = make_donation(db)
    payment = pay_for(db, PayableType.DONATION, donation.id)

    PayableResolver(db, handlers={}).activate(payment)

    assert donation.status == "confirmed"


def test_generic_handler_fails_pending_payable(db):
    donation = make_donation(db)
    payment = pay_for(db, PayableType.DONATION, donation.id)

    PayableResolver(db, handlers={}).fail(payment, "failed", "Card declined")

    assert donation.status == "failed"


def test_registering_a_handler_replaces_generic(registry):
    register_payable(PayableType.DONATION, Donation, payable_resolver.DonationActivationHandler)

    handler = PayableResolver(None).handler_for(PayableType.DONATION)

    assert isinstance(handler, payable_resolver.DonationActivationHandler)


def test_unregistered_payable_is_not_found(db):
    donation = make_donation(db)
    payment = pay_for(db, PayableType.DONATION, donation.id)

    with pytest.raises(NotFoundError):
        PayableResolver(db, handlers={}, models={}).activate(payment)
