import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment
from ..models.pending_payment import PendingPaymentStatus
from ..models.webhook_event import WebhookEvent
from ..utils.clock import utcnow
from ..utils.context import RequestContext
from ..utils.errors import ActivationError, GatewayError, PaymentError
from .audit_service import AuditService
from .payable_resolver import PayableRef, PayableResolver
from .payment_gateway import PaymentGateway, get_gateway
from .payment_store import PaymentStore
from .pending_payment_store import PendingPaymentStore

logger = logging.getLogger(__name__)

EXPIRED_REASON = "Checkout session expired"

# Gateways whose notifications may carry the outcome; others are asked for it
SELF_REPORTING_GATEWAYS = ("mock", "stripe")

# Statuses a gateway or test harness may report, mapped to our vocabulary
REPORTED_STATUSES = {
    "completed": "completed",
    "complete": "completed",
    "success": "completed",
    "successful": "completed",
    "paid": "completed",
    "pending": "pending",
    "processing": "pending",
    "failed": "failed",
    "failure": "failed",
    "declined": "failed",
    "invalid": "failed",
    "cancelled": "cancelled",
    "canceled": "cancelled",
    "reversed": "cancelled",
}


def normalize_reported_status(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    return REPORTED_STATUSES.get(str(status).strip().lower(), "pending")


class WebhookOutcome(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_TERMINAL = "already_terminal"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    STILL_PENDING = "still_pending"
    EXPIRED = "expired"
    PROVIDER_MISMATCH = "provider_mismatch"


@dataclass
class GatewayNotification:
    """An asynchronous payment outcome, from a webhook, redirect or test endpoint.

    ``status`` is None when the notification only carries identifiers and the
    gateway must be asked for the outcome.
    ``provider`` is set for notifications received from outside; it must match
    the gateway the payment was started with.
    """

    reference: str
    status: Optional[str] = None
    provider: Optional[str] = None
    transaction_id: Optional[str] = None
    method: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


IGNORED_OUTCOMES = (WebhookOutcome.NOT_FOUND, WebhookOutcome.PROVIDER_MISMATCH)


@dataclass
class ProcessResult:
    outcome: WebhookOutcome
    payment: Optional[Payment] = None


class WebhookProcessor:
    def __init__(
        self,
        db: Session,
        resolver: Optional[PayableResolver] = None,
        gateway_lookup: Optional[Callable[[str], PaymentGateway]] = None,
    ):
        self.db = db
        self.payments = PaymentStore(db)
        self.pending = PendingPaymentStore(db)
        self.resolver = resolver or PayableResolver(db)
        self.gateway_lookup = gateway_lookup or get_gateway
        self.audit = AuditService(db)

    def handle(self, notification: GatewayNotification, ctx: Optional[RequestContext] = None) -> ProcessResult:
        """Apply a notification in one transaction; commits on success, rolls back on any error."""
        ctx = ctx or RequestContext.system()
        try:
            result = self._handle(notification, ctx)
            self.db.commit()
            return result
        except GatewayError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.exception(
                "Payment processing failed for reference %s [correlation_id=%s]",
                notification.reference, ctx.correlation_id,
            )
            raise ActivationError(
                "Payment could not be applied",
                {"reference": notification.reference, "error": type(e).__name__},
            )

    def _handle(self, notification: GatewayNotification, ctx: RequestContext) -> ProcessResult:
        snapshot = self.payments.find_by_any_reference(notification.reference)
        if snapshot is None:
            return self._not_found(notification)
        if notification.provider and notification.provider != snapshot.gateway:
            logger.warning(
                "Ignoring %s notification for payment %s started with %s",
                notification.provider, snapshot.id, snapshot.gateway,
            )
            return ProcessResult(WebhookOutcome.PROVIDER_MISMATCH, snapshot)
        if snapshot.is_terminal:
            return ProcessResult(WebhookOutcome.ALREADY_TERMINAL, snapshot)

        if notification.status is not None and snapshot.gateway not in SELF_REPORTING_GATEWAYS:
            notification = replace(notification, status=None)
        if notification.status is None:
            # Gateway is queried before the row lock is taken
            notification = self._ask_gateway(snapshot, notification)

        payment = self.payments.find_by_any_reference(notification.reference, lock=True)
        if payment is None:
            return self._not_found(notification)
        if payment.is_terminal:
            logger.info("Payment %s already %s, notification ignored", payment.id, payment.status)
            return ProcessResult(WebhookOutcome.ALREADY_TERMINAL, payment)

        pending = self.pending.find_for_payment(payment)
        if pending is not None and pending.is_expired():
            self.pending.expire(pending)
            self.payments.mark_cancelled(payment, EXPIRED_REASON)
            self.resolver.fail(payment, "expired", EXPIRED_REASON)
            self._audit(ctx, payment, "payment.expired", notification)
            logger.info("Payment %s arrived after checkout expiry, cancelled", payment.id)
            return ProcessResult(WebhookOutcome.EXPIRED, payment)

        status = normalize_reported_status(notification.status)
        ref = PayableRef.of(payment)

        if status == "completed":
            changed = self.payments.mark_paid(
                payment,
                transaction_id=notification.transaction_id,
                method=notification.method,
                gateway_data=notification.raw or None,
            )
            self.pending.mark(pending, PendingPaymentStatus.COMPLETED)
            if changed:
                self.resolver.activate(payment)
                self._audit(ctx, payment, "payment.paid", notification)
            logger.info("Payment %s paid, %s activated", payment.id, ref)
            return ProcessResult(WebhookOutcome.PAID, payment)

        if status == "failed":
            reason = notification.message or "Payment failed"
            self.payments.mark_failed(payment, reason)
            self.pending.mark(pending, PendingPaymentStatus.FAILED)
            self.resolver.fail(payment, "failed", reason)
            self._audit(ctx, payment, "payment.failed", notification)
            logger.info("Payment %s failed for %s: %s", payment.id, ref, reason)
            return ProcessResult(WebhookOutcome.FAILED, payment)

        if status == "cancelled":
            reason = notification.message or "Payment cancelled"
            self.payments.mark_cancelled(payment, reason)
            self.pending.mark(pending, PendingPaymentStatus.CANCELLED)
            self.resolver.fail(payment, "cancelled", reason)
            self._audit(ctx, payment, "payment.cancelled", notification)
            return ProcessResult(WebhookOutcome.CANCELLED, payment)

        return ProcessResult(WebhookOutcome.STILL_PENDING, payment)

    def _ask_gateway(self, payment: Payment, notification: GatewayNotification) -> GatewayNotification:
        gateway = self.gateway_lookup(payment.gateway)
        reported = gateway.check_status(payment.external_reference or notification.reference)
        return GatewayNotification(
            reference=notification.reference,
            status=reported.status,
            provider=notification.provider,
            transaction_id=notification.transaction_id or reported.transaction_id,
            method=reported.method,
            message=reported.message,
            raw={**notification.raw, "gateway_status": reported.raw},
        )

    def _not_found(self, notification: GatewayNotification) -> ProcessResult:
        logger.warning("No payment matches reference %s", notification.reference)
        return ProcessResult(WebhookOutcome.NOT_FOUND)

    def _audit(self, ctx: RequestContext, payment: Payment, action: str, notification: GatewayNotification) -> None:
        self.audit.record(
            ctx,
            action,
            subject_type="payment",
            subject_id=payment.id,
            description=f"{action} for {PayableRef.of(payment)}",
            metadata={"reference": notification.reference, "reported_status": notification.status},
        )

    def expire_stale(self, ctx: Optional[RequestContext] = None) -> int:
        """Cancel every pending checkout whose session has run out."""
        ctx = ctx or RequestContext.system()
        count = 0
        try:
            for pending in self.pending.stale():
                payment = self.payments.get(pending.payment_id, lock=True)
                self.pending.expire(pending)
                if payment is not None and self.payments.mark_cancelled(payment, EXPIRED_REASON):
                    self.resolver.fail(payment, "expired", EXPIRED_REASON)
                    self._audit(ctx, payment, "payment.expired", GatewayNotification(reference=pending.tracking_id))
                count += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if count:
            logger.info("Expired %d stale checkout sessions", count)
        return count


def notification_from_event(event: WebhookEvent) -> GatewayNotification:
    payload = event.payload or {}
    return GatewayNotification(
        reference=event.external_id or event.order_reference,
        status=payload.get("status"),
        provider=event.provider,
        transaction_id=payload.get("transaction_id"),
        method=payload.get("method"),
        message=payload.get("message"),
        raw=payload,
    )


def process_event(session_factory, event_id: int) -> Optional[WebhookOutcome]:
    """Background entry point: process a stored webhook event with a fresh session."""
    db = session_factory()
    try:
        event = db.query(WebhookEvent).filter(WebhookEvent.id == event_id).first()
        if event is None:
            logger.error("Webhook event %s vanished before processing", event_id)
            return None
        notification = notification_from_event(event)
        ctx = RequestContext(user_agent=f"webhook:{event.provider}", correlation_id=f"webhook-{event.id}")

        try:
            result = WebhookProcessor(db).handle(notification, ctx)
        except PaymentError as e:
            event.status = "failed"
            event.error = e.message
            event.processed_at = utcnow()
            db.commit()
            logger.error("Webhook event %s (%s) failed: %s", event.id, event.provider, e.message)
            return None

        event.status = "ignored" if result.outcome in IGNORED_OUTCOMES else "processed"
        event.outcome = result.outcome.value
        event.processed_at = utcnow()
        db.commit()
        logger.info("Webhook event %s (%s) processed: %s", event.id, event.provider, result.outcome.value)
        return result.outcome
    finally:
        db.close()
