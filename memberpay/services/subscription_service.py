import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import config
from ..models.member_profile import MemberProfile
from ..models.payment import PayableType
from ..models.plan import Plan
from ..models.subscription import PlanSubscription, SubscriptionStatus
from ..models.subscription_enhancement import SubscriptionEnhancement
from ..models.user import User
from ..utils.clock import utcnow
from ..utils.context import RequestContext
from ..utils.errors import ForbiddenError, InvalidRequestError, NotFoundError
from ..utils.periods import add_period
from .audit_service import AuditService
from .checkout_service import CheckoutResult, CheckoutService, PayerContact
from .mock_checkout_service import MockCheckoutService
from .payment_gateway import PaymentGateway
from .payment_store import PaymentStore

logger = logging.getLogger(__name__)

LAPSED_REASON = "Subscription lapsed"


@dataclass
class SubscriptionCheckout:
    subscription: PlanSubscription
    checkout: CheckoutResult
    renewal: bool


def subscription_amount(plan: Plan, billing_period: str) -> Decimal:
    price = Decimal(plan.price)
    if billing_period == "year" and plan.invoice_period != "year":
        return price * 12
    return price


class SubscriptionService:
    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.audit = AuditService(db)

    def initiate(
        self,
        ctx: RequestContext,
        user: User,
        plan_id: int,
        billing_period: str = "month",
        contact: Optional[PayerContact] = None,
    ) -> SubscriptionCheckout:
        """Create or reuse the user's subscription to a plan and start its payment.

        Runs as one transaction: if the gateway refuses, the subscription,
        enhancement and payment rows are all rolled back.
        """
        plan = self.db.query(Plan).filter(Plan.id == plan_id).first()
        if not plan or not plan.is_active:
            raise NotFoundError("Plan not found", {"plan_id": plan_id})
        if billing_period not in ("month", "year"):
            raise InvalidRequestError("Invalid billing period", {"billing_period": ["must be month or year"]})
        amount = subscription_amount(plan, billing_period)
        if amount <= 0:
            raise InvalidRequestError("This plan does not require payment", {"plan_id": plan_id})

        contact = contact or PayerContact()
        contact.email = contact.email or user.email
        contact.phone = contact.phone or user.phone
        contact.first_name = contact.first_name or user.first_name
        contact.last_name = contact.last_name or user.last_name

        try:
            now = utcnow()
            subscription = (
                self.db.query(PlanSubscription)
                .filter(PlanSubscription.user_id == user.id, PlanSubscription.plan_id == plan.id)
                .with_for_update()
                .first()
            )
            if subscription is None:
                subscription = PlanSubscription(user_id=user.id, plan_id=plan.id)
                self.db.add(subscription)

            renewal = subscription.status == SubscriptionStatus.ACTIVE
            restarted = subscription.status == SubscriptionStatus.CANCELLED
            if not renewal:
                subscription.name = plan.name
                subscription.billing_period = billing_period
                subscription.status = SubscriptionStatus.PAYMENT_PENDING
                subscription.starts_at = now
                subscription.ends_at = add_period(now, billing_period)
                subscription.canceled_at = None
                subscription.cancellation_reason = None
            self.db.flush()

            enhancement = (
                self.db.query(SubscriptionEnhancement)
                .filter(SubscriptionEnhancement.subscription_id == subscription.id)
                .first()
            )
            if enhancement is None:
                enhancement = SubscriptionEnhancement(subscription_id=subscription.id, enhancement_metadata={})
                self.db.add(enhancement)
            if not renewal:
                enhancement.status = SubscriptionStatus.PAYMENT_PENDING
            if restarted:
                enhancement.renewal_attempts = 0
                enhancement.payment_failure_state = None
            if user.active_subscription_id and user.active_subscription_id != subscription.id:
                enhancement.set_meta("previous_subscription_id", user.active_subscription_id)
            self.db.flush()

            checkout = CheckoutService(self.db, self.gateway).start(
                ctx,
                PayableType.SUBSCRIPTION,
                subscription.id,
                amount,
                plan.currency,
                f"{plan.name} subscription ({billing_period}ly)",
                contact,
                payer_id=user.id,
                metadata={"plan_id": plan.id, "billing_period": billing_period, "renewal": renewal,
                          "payer_phone": contact.phone},
            )

            self.audit.record(
                ctx,
                "subscription.renewal_initiated" if renewal else "subscription.initiated",
                subject_type="subscription",
                subject_id=subscription.id,
                description=f"Started {plan.name} subscription payment",
                metadata={"plan_id": plan.id, "amount": str(amount), "payment_id": checkout.payment.id},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "User %s initiated %s subscription %s (plan %s, %s) [correlation_id=%s]",
            user.id, "renewal of" if renewal else "new", subscription.id, plan.id, billing_period, ctx.correlation_id,
        )
        return SubscriptionCheckout(subscription=subscription, checkout=checkout, renewal=renewal)

    def cancel(self, ctx: RequestContext, user: User, reason: Optional[str] = None) -> PlanSubscription:
        try:
            subscription = (
                self.db.query(PlanSubscription)
                .filter(
                    PlanSubscription.user_id == user.id,
                    PlanSubscription.status == SubscriptionStatus.ACTIVE,
                )
                .with_for_update()
                .first()
            )
            if subscription is None:
                raise NotFoundError("No active subscription found")

            now = utcnow()
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.canceled_at = now
            subscription.cancellation_reason = reason
            if subscription.enhancement:
                subscription.enhancement.status = SubscriptionStatus.CANCELLED
            self._clear_member(user, subscription)

            self.audit.record(
                ctx,
                "subscription.cancelled",
                subject_type="subscription",
                subject_id=subscription.id,
                description="Subscription cancelled by member",
                metadata={"reason": reason},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("User %s cancelled subscription %s", user.id, subscription.id)
        return subscription

    def current(self, user: User) -> Optional[PlanSubscription]:
        # Lapsed subscriptions count until their grace period is over
        cutoff = utcnow() - timedelta(days=config["SUBSCRIPTION_GRACE_DAYS"])
        return (
            self.db.query(PlanSubscription)
            .filter(
                PlanSubscription.user_id == user.id,
                PlanSubscription.status == SubscriptionStatus.ACTIVE,
                or_(PlanSubscription.ends_at.is_(None), PlanSubscription.ends_at >= cutoff),
            )
            .first()
        )

    def expire_lapsed(self, ctx: Optional[RequestContext] = None) -> Dict[str, int]:
        """Put subscriptions past ``ends_at`` into a grace period and cancel those whose grace ran out.

        Returns how many entered the grace period and how many were cancelled.
        """
        ctx = ctx or RequestContext.system()
        now = utcnow()
        entered = cancelled = 0
        try:
            lapsed = (
                self.db.query(SubscriptionEnhancement)
                .join(PlanSubscription, SubscriptionEnhancement.subscription_id == PlanSubscription.id)
                .filter(
                    SubscriptionEnhancement.status == SubscriptionStatus.ACTIVE,
                    PlanSubscription.status == SubscriptionStatus.ACTIVE,
                    PlanSubscription.ends_at.isnot(None),
                    PlanSubscription.ends_at < now,
                )
                .with_for_update()
                .all()
            )
            for enhancement in lapsed:
                subscription = enhancement.subscription
                enhancement.status = SubscriptionStatus.GRACE_PERIOD
                enhancement.grace_period_started_at = now
                enhancement.grace_period_ends_at = now + timedelta(days=config["SUBSCRIPTION_GRACE_DAYS"])
                user = subscription.user
                if user is not None and user.active_subscription_id == subscription.id:
                    user.subscription_status = SubscriptionStatus.GRACE_PERIOD
                self.audit.record(
                    ctx,
                    "subscription.grace_period",
                    subject_type="subscription",
                    subject_id=subscription.id,
                    description="Subscription lapsed, grace period started",
                    metadata={"grace_period_ends_at": enhancement.grace_period_ends_at.isoformat()},
                )
                entered += 1

            ended = (
                self.db.query(SubscriptionEnhancement)
                .filter(
                    SubscriptionEnhancement.status == SubscriptionStatus.GRACE_PERIOD,
                    SubscriptionEnhancement.grace_period_ends_at < now,
                )
                .with_for_update()
                .all()
            )
            for enhancement in ended:
                subscription = enhancement.subscription
                enhancement.status = SubscriptionStatus.CANCELLED
                if subscription.status == SubscriptionStatus.ACTIVE:
                    subscription.status = SubscriptionStatus.CANCELLED
                    subscription.canceled_at = now
                    subscription.cancellation_reason = LAPSED_REASON
                if subscription.user is not None:
                    self._clear_member(subscription.user, subscription)
                self.audit.record(
                    ctx,
                    "subscription.lapsed",
                    subject_type="subscription",
                    subject_id=subscription.id,
                    description="Grace period ended without payment",
                )
                cancelled += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if entered or cancelled:
            logger.info("Subscription sweep: %d entered grace period, %d cancelled", entered, cancelled)
        return {"grace_period": entered, "cancelled": cancelled}

    def _clear_member(self, user: User, subscription: PlanSubscription) -> None:
        if user.active_subscription_id not in (None, subscription.id):
            return
        user.subscription_status = None
        user.active_subscription_id = None
        profile = self.db.query(MemberProfile).filter(MemberProfile.user_id == user.id).first()
        if profile and profile.plan_id == subscription.plan_id:
            profile.plan_id = None

    def process_mock_outcome(self, ctx: RequestContext, transaction_id: str, phone: Optional[str]):
        payment = PaymentStore(self.db).find_by_any_reference(transaction_id)
        if payment is None or payment.payable_type != PayableType.SUBSCRIPTION:
            raise NotFoundError("Subscription payment not found", {"transaction_id": transaction_id})
        if payment.payer_id != ctx.user_id:
            raise ForbiddenError("This payment belongs to another member")
        return MockCheckoutService(self.db).complete(ctx, transaction_id, phone)
