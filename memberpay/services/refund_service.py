import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment, PaymentStatus
from ..utils.context import RequestContext
from ..utils.errors import ConflictError, GatewayError, NotFoundError
from .audit_service import AuditService
from .payable_resolver import PayableRef, PayableResolver
from .payment_gateway import PaymentGateway, get_gateway
from .payment_store import PaymentStore

logger = logging.getLogger(__name__)


class RefundService:
    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.payments = PaymentStore(db)

    def refund(self, ctx: RequestContext, reference: str, reason: str) -> Payment:
        """Refund a paid payment at the gateway, then mark it and its payable refunded."""
        try:
            payment = self.payments.find_by_any_reference(reference, lock=True)
            if payment is None:
                raise NotFoundError("Payment not found", {"reference": reference})
            if payment.status != PaymentStatus.PAID:
                raise ConflictError("Only paid payments can be refunded", {"status": payment.status})

            gateway = self.gateway or get_gateway(payment.gateway)
            confirmation = (payment.meta or {}).get("confirmation") or {}
            result = gateway.refund(
                payment.external_reference or payment.transaction_id,
                payment.amount,
                reason,
                confirmation_code=(confirmation.get("gateway_status") or {}).get("confirmation_code"),
            )
            if not result.success:
                raise GatewayError(result.message or "Refund was rejected", {"payment_id": payment.id}, declined=True)

            self.payments.mark_refunded(payment, ctx.user_id, reason)
            payment.meta = {**(payment.meta or {}), "refund": result.raw}
            PayableResolver(self.db).refund(payment)
            AuditService(self.db).record(
                ctx,
                "payment.refunded",
                subject_type="payment",
                subject_id=payment.id,
                description=f"Refunded {payment.amount} {payment.currency} for {PayableRef.of(payment)}",
                metadata={"reason": reason, "refund_transaction_id": result.transaction_id},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Payment %s refunded by user %s", payment.id, ctx.user_id)
        return payment
