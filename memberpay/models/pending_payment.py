from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, JSON
from sqlalchemy import Enum as SAEnum
from ..database import Base
from ..utils.clock import utcnow
from .payment import PayableType


class PendingPaymentStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PendingPayment(Base):
    """Checkout session tracker, keyed by the gateway tracking id."""

    __tablename__ = "pending_payments"

    id = Column(Integer, primary_key=True, index=True)
    tracking_id = Column(String, unique=True, index=True, nullable=False)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    payable_type = Column(
        SAEnum(PayableType, native_enum=False, values_callable=lambda e: [m.value for m in e], length=32),
        nullable=False,
    )
    payable_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="KES")
    gateway = Column(String, nullable=False)
    status = Column(String, default=PendingPaymentStatus.PENDING, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    pending_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def is_expired(self, now=None) -> bool:
        if self.status == PendingPaymentStatus.EXPIRED:
            return True
        return self.expires_at is not None and (now or utcnow()) > self.expires_at

    def can_be_completed(self, now=None) -> bool:
        return self.status == PendingPaymentStatus.PENDING and not self.is_expired(now)
