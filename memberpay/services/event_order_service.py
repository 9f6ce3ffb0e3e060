import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.event import Event
from ..models.event_order import EventOrder
from ..models.payment import PayableType
from ..models.plan import Plan
from ..models.promo_code import PromoCode
from ..models.subscription import PlanSubscription, SubscriptionStatus
from ..models.user import User
from ..utils.clock import utcnow
from ..utils.context import RequestContext
from ..utils.errors import ConflictError, InvalidRequestError, NotFoundError
from ..utils.references import event_order_reference, qr_code_token, receipt_number
from .audit_service import AuditService
from .checkout_service import CheckoutResult, CheckoutService, PayerContact
from .payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Orders that hold a seat
SEAT_HOLDING_STATUSES = ("pending", "paid")


@dataclass
class Purchaser:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class EventOrderCheckout:
    order: EventOrder
    checkout: Optional[CheckoutResult]


def promo_discount(promo: PromoCode, amount: Decimal) -> Decimal:
    if promo.type == "fixed":
        discount = Decimal(promo.value)
    else:
        discount = amount * Decimal(promo.value) / 100
    return min(discount, amount).quantize(CENT, rounding=ROUND_HALF_UP)


class EventOrderService:
    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.audit = AuditService(db)

    def available_spots(self, event: Event) -> Optional[int]:
        if event.capacity is None:
            return None
        taken = (
            self.db.query(func.coalesce(func.sum(EventOrder.quantity), 0))
            .filter(EventOrder.event_id == event.id, EventOrder.status.in_(SEAT_HOLDING_STATUSES))
            .scalar()
        )
        return max(event.capacity - int(taken), 0)

    def subscriber_discount_percent(self, user: Optional[User]) -> Decimal:
        if user is None:
            return Decimal("0")
        subscription = (
            self.db.query(PlanSubscription)
            .filter(PlanSubscription.user_id == user.id, PlanSubscription.status == SubscriptionStatus.ACTIVE)
            .first()
        )
        if subscription is None:
            return Decimal("0")
        plan = self.db.query(Plan).filter(Plan.id == subscription.plan_id).first()
        return Decimal(plan.ticket_discount_percent or 0) if plan else Decimal("0")

    def create_order(
        self,
        ctx: RequestContext,
        event_id: int,
        quantity: int,
        purchaser: Purchaser,
        promo_code: Optional[str] = None,
        user: Optional[User] = None,
    ) -> EventOrderCheckout:
        if quantity < 1:
            raise InvalidRequestError("Quantity must be at least 1", {"quantity": ["must be at least 1"]})
        if user is None and not purchaser.email:
            raise InvalidRequestError("Guest purchases need an email address", {"email": ["required for guests"]})

        try:
            event = self.db.query(Event).filter(Event.id == event_id).with_for_update().first()
            if event is None:
                raise NotFoundError("Event not found", {"event_id": event_id})
            if event.status != "published":
                raise InvalidRequestError("Event is not open for registration", {"event_id": event_id})
            if not event.is_paid:
                raise InvalidRequestError("This event does not sell tickets", {"event_id": event_id})

            available = self.available_spots(event)
            if available is not None and quantity > available:
                raise InvalidRequestError(
                    f"Only {available} spots remaining",
                    {"quantity": [f"only {available} spots remaining"], "available": available},
                )

            unit_price = Decimal(event.price)
            original_amount = (unit_price * quantity).quantize(CENT)

            promo = None
            promo_amount = Decimal("0.00")
            if promo_code:
                promo = self.db.query(PromoCode).filter(func.upper(PromoCode.code) == promo_code.strip().upper()).first()
                if promo is None or not promo.is_valid_for(event.id):
                    raise InvalidRequestError("Invalid or expired promo code", {"promo_code": ["invalid or expired"]})
                promo_amount = promo_discount(promo, original_amount)

            after_promo = original_amount - promo_amount
            percent = self.subscriber_discount_percent(user)
            subscriber_amount = (after_promo * percent / 100).quantize(CENT, rounding=ROUND_HALF_UP)
            total = max(after_promo - subscriber_amount, Decimal("0.00"))

            order = EventOrder(
                event_id=event.id,
                user_id=user.id if user else None,
                guest_name=purchaser.name,
                guest_email=purchaser.email,
                guest_phone=purchaser.phone,
                quantity=quantity,
                unit_price=unit_price,
                original_amount=original_amount,
                promo_code_id=promo.id if promo else None,
                promo_discount_amount=promo_amount,
                subscriber_discount_amount=subscriber_amount,
                total_amount=total,
                currency=event.currency,
                status="pending",
                reference=event_order_reference(),
                qr_code_token=qr_code_token(),
            )
            self.db.add(order)
            self.db.flush()

            checkout = None
            if total <= 0:
                # Fully discounted: nothing to collect
                now = utcnow()
                order.status = "paid"
                order.purchased_at = now
                order.receipt_number = receipt_number("TKT", now)
                if promo:
                    promo.times_used = (promo.times_used or 0) + 1
            else:
                first_name, _, last_name = (purchaser.name or "").partition(" ")
                contact = PayerContact(
                    email=purchaser.email or (user.email if user else None),
                    phone=purchaser.phone or (user.phone if user else None),
                    first_name=first_name or (user.first_name if user else None),
                    last_name=last_name or (user.last_name if user else None),
                )
                checkout = CheckoutService(self.db, self.gateway).start(
                    ctx,
                    PayableType.EVENT_ORDER,
                    order.id,
                    total,
                    event.currency,
                    f"{quantity} x {event.title}",
                    contact,
                    payer_id=user.id if user else None,
                    metadata={"event_id": event.id, "quantity": quantity, "payer_phone": contact.phone},
                )
                order.payment_id = checkout.payment.id

            self.audit.record(
                ctx,
                "event_order.created",
                subject_type="event_order",
                subject_id=order.id,
                description=f"Ordered {quantity} ticket(s) for {event.title}",
                metadata={"reference": order.reference, "total": str(total), "promo_code": promo_code},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Event order %s created for event %s, total %s %s", order.reference, event_id, total, order.currency)
        return EventOrderCheckout(order=order, checkout=checkout)

    def get_by_reference(self, reference: str) -> EventOrder:
        order = self.db.query(EventOrder).filter(EventOrder.reference == reference).first()
        if order is None:
            raise NotFoundError("Order not found", {"reference": reference})
        return order

    def check_in(self, ctx: RequestContext, qr_token: str) -> EventOrder:
        try:
            order = (
                self.db.query(EventOrder)
                .filter(EventOrder.qr_code_token == qr_token)
                .with_for_update()
                .first()
            )
            if order is None:
                raise NotFoundError("Ticket not found")
            if order.status != "paid":
                raise InvalidRequestError("Ticket has not been paid for", {"status": order.status})
            if order.checked_in_at is not None:
                raise ConflictError("Ticket already checked in", {"checked_in_at": order.checked_in_at.isoformat()})

            order.checked_in_at = utcnow()
            self.audit.record(
                ctx,
                "event_order.checked_in",
                subject_type="event_order",
                subject_id=order.id,
                description=f"Checked in {order.reference}",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return order
