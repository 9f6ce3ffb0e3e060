import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.payment import Payment, PaymentStatus, PayableType
from ..utils.clock import utcnow
from ..utils.references import order_reference

logger = logging.getLogger(__name__)


class PaymentStore:
    """Durable record of every attempted transaction.

    Status transitions only ever move a pending payment to one terminal
    state; ``paid -> refunded`` is the single exception.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        payable_type: PayableType,
        payable_id: int,
        gateway: str,
        amount: Decimal,
        currency: str,
        payer_id: Optional[int] = None,
        description: Optional[str] = None,
        method: Optional[str] = None,
        meta: Optional[dict] = None,
    ) -> Payment:
        payment = Payment(
            payable_type=payable_type,
            payable_id=payable_id,
            payer_id=payer_id,
            gateway=gateway,
            method=method,
            status=PaymentStatus.PENDING,
            amount=amount,
            currency=currency,
            description=description,
            order_reference=order_reference(payable_type.value, payable_id),
            meta=meta or {},
        )
        self.db.add(payment)
        self.db.flush()
        return payment

    def find_by_any_reference(self, reference: str, lock: bool = False) -> Optional[Payment]:
        """Look a payment up by gateway id, merchant reference, transaction id or numeric id."""
        if not reference:
            return None
        conditions = [
            Payment.external_reference == reference,
            Payment.order_reference == reference,
            Payment.transaction_id == reference,
        ]
        if reference.isdigit():
            conditions.append(Payment.id == int(reference))

        query = self.db.query(Payment).filter(or_(*conditions))
        if lock:
            query = query.with_for_update().populate_existing()
        return query.order_by(Payment.id.desc()).first()

    def get(self, payment_id: int, lock: bool = False) -> Optional[Payment]:
        query = self.db.query(Payment).filter(Payment.id == payment_id)
        if lock:
            query = query.with_for_update().populate_existing()
        return query.first()

    def attach_gateway_reference(self, payment: Payment, external_reference: str, raw: Optional[dict] = None) -> None:
        payment.external_reference = external_reference
        payment.transaction_id = payment.transaction_id or external_reference
        if raw:
            payment.meta = {**(payment.meta or {}), "gateway_response": raw}
        self.db.flush()

    def mark_paid(self, payment: Payment, transaction_id: Optional[str] = None, method: Optional[str] = None,
                  gateway_data: Optional[dict] = None) -> bool:
        """Mark a pending payment paid. Returns False when nothing changed."""
        if payment.status != PaymentStatus.PENDING:
            logger.info("Payment %s already %s, mark_paid ignored", payment.id, payment.status)
            return False
        payment.status = PaymentStatus.PAID
        payment.paid_at = utcnow()
        if transaction_id:
            payment.transaction_id = transaction_id
        if method:
            payment.method = method
        if gateway_data:
            payment.meta = {**(payment.meta or {}), "confirmation": gateway_data}
        self.db.flush()
        return True

    def mark_failed(self, payment: Payment, reason: Optional[str] = None) -> bool:
        return self._finish(payment, PaymentStatus.FAILED, reason)

    def mark_cancelled(self, payment: Payment, reason: Optional[str] = None) -> bool:
        return self._finish(payment, PaymentStatus.CANCELLED, reason)

    def mark_refunded(self, payment: Payment, refunded_by: Optional[int], reason: Optional[str] = None) -> bool:
        if payment.status != PaymentStatus.PAID:
            return False
        payment.status = PaymentStatus.REFUNDED
        payment.refunded_at = utcnow()
        payment.refunded_by = refunded_by
        payment.refund_reason = reason
        self.db.flush()
        return True

    def _finish(self, payment: Payment, status: str, reason: Optional[str]) -> bool:
        if payment.status != PaymentStatus.PENDING:
            logger.info("Payment %s already %s, %s ignored", payment.id, payment.status, status)
            return False
        payment.status = status
        payment.failure_reason = reason
        self.db.flush()
        return True

    def history_for_user(self, user_id: int, limit: int = 50) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.payer_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(limit)
            .all()
        )

    def for_payable(self, payable_type: PayableType, payable_id: int) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.payable_type == payable_type, Payment.payable_id == payable_id)
            .order_by(Payment.id)
            .all()
        )
