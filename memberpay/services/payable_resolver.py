import logging
from dataclasses import dataclass
from typing import Dict, Optional, Type

from sqlalchemy.orm import Session

from ..models.donation import Donation
from ..models.event_order import EventOrder
from ..models.member_profile import MemberProfile
from ..models.payment import Payment, PayableType
from ..models.promo_code import PromoCode
from ..models.subscription import PlanSubscription, SubscriptionStatus
from ..models.subscription_enhancement import SubscriptionEnhancement
from ..models.user import User
from ..utils.clock import utcnow
from ..utils.errors import NotFoundError
from ..utils.periods import add_period
from ..utils.references import receipt_number

logger = logging.getLogger(__name__)

MAX_RENEWAL_ATTEMPTS = 3
RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass(frozen=True)
class PayableRef:
    kind: PayableType
    id: int

    @classmethod
    def of(cls, payment: Payment) -> "PayableRef":
        return cls(PayableType(payment.payable_type), payment.payable_id)

    def __str__(self):
        return f"{self.kind.value}:{self.id}"


class ActivationHandler:
    """Applies payment outcomes to one kind of payable.

    Handlers run inside the caller's transaction and only flush. Each one
    checks the payable's current state first so a repeated call is a no-op.
    """

    model = None

    def __init__(self, db: Session):
        self.db = db

    def load(self, ref: PayableRef, lock: bool = True):
        query = self.db.query(self.model).filter(self.model.id == ref.id)
        if lock:
            query = query.with_for_update().populate_existing()
        entity = query.first()
        if entity is None:
            raise NotFoundError(f"Payable {ref} not found", {"payable": str(ref)})
        return entity

    def activate(self, payment: Payment, entity) -> None:
        raise NotImplementedError

    def fail(self, payment: Payment, entity, status: str, reason: Optional[str]) -> None:
        raise NotImplementedError

    def refund(self, payment: Payment, entity) -> None:
        pass


class SubscriptionActivationHandler(ActivationHandler):
    model = PlanSubscription

    def activate(self, payment: Payment, subscription: PlanSubscription) -> None:
        enhancement = self._enhancement(subscription)
        if enhancement.get_meta("last_activated_payment_id") == payment.id:
            logger.info("Subscription %s already activated by payment %s", subscription.id, payment.id)
            return

        now = utcnow()
        renewal = subscription.status == SubscriptionStatus.ACTIVE

        others = (
            self.db.query(PlanSubscription)
            .filter(
                PlanSubscription.user_id == subscription.user_id,
                PlanSubscription.status == SubscriptionStatus.ACTIVE,
                PlanSubscription.id != subscription.id,
            )
            .with_for_update()
            .all()
        )
        for other in others:
            other.status = SubscriptionStatus.CANCELLED
            other.canceled_at = now
            other.cancellation_reason = "Replaced by a new subscription"
            if other.enhancement:
                other.enhancement.status = SubscriptionStatus.CANCELLED
            logger.info("Cancelled subscription %s superseded by %s", other.id, subscription.id)
        if others:
            enhancement.set_meta("previous_subscription_id", others[0].id)
        # Cancellations must hit the database before the new row turns active
        self.db.flush()

        if renewal and subscription.ends_at and subscription.ends_at > now:
            subscription.ends_at = add_period(subscription.ends_at, subscription.billing_period)
        else:
            subscription.starts_at = now
            subscription.ends_at = add_period(now, subscription.billing_period)
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.canceled_at = None
        subscription.cancellation_reason = None

        enhancement.status = SubscriptionStatus.ACTIVE
        enhancement.payment_failure_state = None
        enhancement.renewal_attempts = 0
        enhancement.last_renewal_result = "success"
        enhancement.last_renewal_error = None
        enhancement.last_renewal_attempt_at = now
        enhancement.grace_period_started_at = None
        enhancement.grace_period_ends_at = None
        enhancement.set_meta("last_activated_payment_id", payment.id)

        user = self.db.query(User).filter(User.id == subscription.user_id).first()
        if user:
            user.subscription_status = SubscriptionStatus.ACTIVE
            user.active_subscription_id = subscription.id
            user.subscription_activated_at = now
            user.last_payment_date = now

        profile = self.db.query(MemberProfile).filter(MemberProfile.user_id == subscription.user_id).first()
        if profile is None:
            profile = MemberProfile(user_id=subscription.user_id)
            self.db.add(profile)
        profile.plan_id = subscription.plan_id
        self.db.flush()

    def fail(self, payment: Payment, subscription: PlanSubscription, status: str, reason: Optional[str]) -> None:
        enhancement = self._enhancement(subscription)
        if enhancement.get_meta("last_failed_payment_id") == payment.id:
            return
        now = utcnow()
        max_attempts = enhancement.max_renewal_attempts or MAX_RENEWAL_ATTEMPTS
        attempts = min((enhancement.renewal_attempts or 0) + 1, max_attempts)
        enhancement.renewal_attempts = attempts
        enhancement.payment_failure_state = status
        enhancement.last_renewal_result = "failed"
        enhancement.last_renewal_error = reason
        enhancement.last_renewal_attempt_at = now
        enhancement.set_meta("last_failed_payment_id", payment.id)

        # Below the limit a pending subscription can be retried and an active one keeps running
        if attempts >= max_attempts:
            enhancement.payment_failure_state = RETRIES_EXHAUSTED
            if subscription.status == SubscriptionStatus.PAYMENT_PENDING:
                subscription.status = SubscriptionStatus.CANCELLED
                subscription.canceled_at = now
                subscription.cancellation_reason = f"Payment failed {attempts} times"
                enhancement.status = SubscriptionStatus.CANCELLED
            logger.warning(
                "Subscription %s reached %s failed payment attempts", subscription.id, attempts,
            )
        self.db.flush()

    def _enhancement(self, subscription: PlanSubscription) -> SubscriptionEnhancement:
        enhancement = (
            self.db.query(SubscriptionEnhancement)
            .filter(SubscriptionEnhancement.subscription_id == subscription.id)
            .with_for_update()
            .first()
        )
        if enhancement is None:
            enhancement = SubscriptionEnhancement(
                subscription_id=subscription.id,
                status=SubscriptionStatus.PAYMENT_PENDING,
                renewal_attempts=0,
                enhancement_metadata={},
            )
            self.db.add(enhancement)
            self.db.flush()
        return enhancement


class EventOrderActivationHandler(ActivationHandler):
    model = EventOrder

    def activate(self, payment: Payment, order: EventOrder) -> None:
        if order.status == "paid":
            return
        now = utcnow()
        order.status = "paid"
        order.purchased_at = now
        order.payment_id = payment.id
        if not order.receipt_number:
            order.receipt_number = receipt_number("TKT", now)

        if order.promo_code_id:
            promo = (
                self.db.query(PromoCode)
                .filter(PromoCode.id == order.promo_code_id)
                .with_for_update()
                .first()
            )
            if promo:
                promo.times_used = (promo.times_used or 0) + 1
        self.db.flush()

    def fail(self, payment: Payment, order: EventOrder, status: str, reason: Optional[str]) -> None:
        if order.status == "pending":
            order.status = "failed"
            self.db.flush()

    def refund(self, payment: Payment, order: EventOrder) -> None:
        if order.status == "paid":
            order.status = "refunded"
            self.db.flush()


class DonationActivationHandler(ActivationHandler):
    model = Donation

    def activate(self, payment: Payment, donation: Donation) -> None:
        if donation.status == "paid":
            return
        now = utcnow()
        donation.status = "paid"
        donation.payment_date = now
        donation.payment_id = payment.id
        if not donation.receipt_number:
            donation.receipt_number = receipt_number("RCP", now)
        self.db.flush()

    def fail(self, payment: Payment, donation: Donation, status: str, reason: Optional[str]) -> None:
        if donation.status == "pending":
            donation.status = "cancelled" if status == "cancelled" else "failed"
            self.db.flush()

    def refund(self, payment: Payment, donation: Donation) -> None:
        if donation.status == "paid":
            donation.status = "refunded"
            self.db.flush()


class GenericActivationHandler(ActivationHandler):
    """Fallback for payables without a dedicated handler."""

    def __init__(self, db: Session, model=None):
        super().__init__(db)
        self.model = model

    def load(self, ref: PayableRef, lock: bool = True):
        if self.model is None:
            raise NotFoundError(f"No payable model registered for {ref.kind.value}", {"payable": str(ref)})
        return super().load(ref, lock)

    def activate(self, payment: Payment, entity) -> None:
        if getattr(entity, "status", None) == "active":
            return
        if callable(getattr(entity, "activate", None)):
            entity.activate()
        else:
            entity.status = "active"

        user = getattr(entity, "user", None)
        if user is not None:
            now = utcnow()
            user.subscription_status = "active"
            user.subscription_activated_at = now
            user.last_payment_date = now
        self.db.flush()

    def fail(self, payment: Payment, entity, status: str, reason: Optional[str]) -> None:
        if getattr(entity, "status", None) == "pending":
            entity.status = "failed"
            self.db.flush()


HANDLERS: Dict[PayableType, Type[ActivationHandler]] = {
    PayableType.SUBSCRIPTION: SubscriptionActivationHandler,
    PayableType.EVENT_ORDER: EventOrderActivationHandler,
    PayableType.DONATION: DonationActivationHandler,
}

PAYABLE_MODELS: Dict[PayableType, type] = {
    PayableType.SUBSCRIPTION: PlanSubscription,
    PayableType.EVENT_ORDER: EventOrder,
    PayableType.DONATION: Donation,
}


def register_payable(kind: PayableType, model, handler: Optional[Type[ActivationHandler]] = None) -> None:
    """Register the model behind a payable kind.

    Without a handler the kind is served by GenericActivationHandler.
    """
    PAYABLE_MODELS[kind] = model
    if handler is None:
        HANDLERS.pop(kind, None)
    else:
        HANDLERS[kind] = handler


class PayableResolver:
    """Maps a payment's payable reference to its handler and dispatches outcomes."""

    def __init__(
        self,
        db: Session,
        handlers: Optional[Dict[PayableType, Type[ActivationHandler]]] = None,
        models: Optional[Dict[PayableType, type]] = None,
    ):
        self.db = db
        self.handlers = HANDLERS if handlers is None else handlers
        self.models = PAYABLE_MODELS if models is None else models

    def handler_for(self, kind: PayableType) -> ActivationHandler:
        handler_cls = self.handlers.get(kind)
        if handler_cls is None:
            return GenericActivationHandler(self.db, self.models.get(kind))
        return handler_cls(self.db)

    def resolve(self, ref: PayableRef, lock: bool = False):
        return self.handler_for(ref.kind).load(ref, lock=lock)

    def activate(self, payment: Payment) -> None:
        ref = PayableRef.of(payment)
        handler = self.handler_for(ref.kind)
        handler.activate(payment, handler.load(ref))
        logger.info("Activated %s for payment %s", ref, payment.id)

    def fail(self, payment: Payment, status: str, reason: Optional[str] = None) -> None:
        ref = PayableRef.of(payment)
        handler = self.handler_for(ref.kind)
        handler.fail(payment, handler.load(ref), status, reason)
        logger.info("Recorded %s outcome on %s for payment %s", status, ref, payment.id)

    def refund(self, payment: Payment) -> None:
        ref = PayableRef.of(payment)
        handler = self.handler_for(ref.kind)
        handler.refund(payment, handler.load(ref))
