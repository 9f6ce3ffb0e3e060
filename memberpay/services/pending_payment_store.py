import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import config
from ..models.payment import Payment
from ..models.pending_payment import PendingPayment, PendingPaymentStatus
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class PendingPaymentStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, payment: Payment, tracking_id: str, metadata: Optional[dict] = None,
               ttl_minutes: Optional[int] = None) -> PendingPayment:
        ttl = ttl_minutes if ttl_minutes is not None else config["PENDING_PAYMENT_TTL_MINUTES"]
        pending = PendingPayment(
            tracking_id=tracking_id,
            payment_id=payment.id,
            payable_type=payment.payable_type,
            payable_id=payment.payable_id,
            user_id=payment.payer_id,
            amount=payment.amount,
            currency=payment.currency,
            gateway=payment.gateway,
            status=PendingPaymentStatus.PENDING,
            expires_at=utcnow() + timedelta(minutes=ttl),
            pending_metadata=metadata,
        )
        self.db.add(pending)
        self.db.flush()
        return pending

    def find_for_payment(self, payment: Payment) -> Optional[PendingPayment]:
        return (
            self.db.query(PendingPayment)
            .filter(PendingPayment.payment_id == payment.id)
            .order_by(PendingPayment.id.desc())
            .first()
        )

    def find_by_tracking_id(self, tracking_id: str) -> Optional[PendingPayment]:
        return self.db.query(PendingPayment).filter(PendingPayment.tracking_id == tracking_id).first()

    def mark(self, pending: Optional[PendingPayment], status: str) -> None:
        if pending is None or pending.status != PendingPaymentStatus.PENDING:
            return
        pending.status = status
        if status == PendingPaymentStatus.COMPLETED:
            pending.completed_at = utcnow()
        self.db.flush()

    def expire(self, pending: PendingPayment) -> None:
        if pending.status == PendingPaymentStatus.PENDING:
            pending.status = PendingPaymentStatus.EXPIRED
            self.db.flush()

    def stale(self, now=None) -> list[PendingPayment]:
        return (
            self.db.query(PendingPayment)
            .filter(
                PendingPayment.status == PendingPaymentStatus.PENDING,
                PendingPayment.expires_at < (now or utcnow()),
            )
            .all()
        )
