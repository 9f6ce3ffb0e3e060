import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment
from ..utils.context import RequestContext
from ..utils.errors import NotFoundError
from ..utils.references import random_code
from .mock_gateway import MockOutcome, resolve_mock_outcome
from .payment_store import PaymentStore
from .pending_payment_store import PendingPaymentStore
from .webhook_processor import GatewayNotification, ProcessResult, WebhookProcessor

logger = logging.getLogger(__name__)


class MockCheckoutService:
    """Drives mock gateway payments to an outcome through the normal webhook path."""

    def __init__(self, db: Session):
        self.db = db
        self.payments = PaymentStore(db)

    def get_payment(self, reference: str) -> Payment:
        payment = self.payments.find_by_any_reference(reference)
        if payment is None:
            raise NotFoundError("Payment not found", {"reference": reference})
        return payment

    def checkout_info(self, reference: str) -> dict:
        payment = self.get_payment(reference)
        pending = PendingPaymentStore(self.db).find_for_payment(payment)
        return {
            "transaction_id": payment.reference,
            "order_reference": payment.order_reference,
            "payable_type": payment.payable_type.value,
            "amount": payment.amount,
            "currency": payment.currency,
            "status": payment.status,
            "description": payment.description,
            "expires_at": pending.expires_at if pending else None,
        }

    def complete(self, ctx: RequestContext, reference: str, phone: Optional[str] = None) -> tuple[MockOutcome, ProcessResult]:
        self.get_payment(reference)
        if phone:
            outcome = resolve_mock_outcome(phone)
        else:
            outcome = MockOutcome("completed", "Payment completed")

        notification = GatewayNotification(
            reference=reference,
            status=outcome.status,
            provider="mock",
            transaction_id=f"TXN_{random_code(12)}" if outcome.status == "completed" else None,
            method="mpesa",
            message=outcome.message,
            raw={"source": "mock", "phone": phone},
        )
        result = WebhookProcessor(self.db).handle(notification, ctx)
        logger.info("Mock payment %s resolved as %s -> %s", reference, outcome.status, result.outcome.value)
        return outcome, result

    def cancel(self, ctx: RequestContext, reference: str) -> ProcessResult:
        self.get_payment(reference)
        notification = GatewayNotification(
            reference=reference,
            status="cancelled",
            provider="mock",
            message="Cancelled by customer",
            raw={"source": "mock"},
        )
        return WebhookProcessor(self.db).handle(notification, ctx)
