from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, JSON
from sqlalchemy import Enum as SAEnum
from ..database import Base
from ..utils.clock import utcnow


class PayableType(str, Enum):
    SUBSCRIPTION = "subscription"
    EVENT_ORDER = "event_order"
    DONATION = "donation"


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    TERMINAL = frozenset({PAID, FAILED, CANCELLED, REFUNDED})


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payable_type = Column(
        SAEnum(PayableType, native_enum=False, values_callable=lambda e: [m.value for m in e], length=32),
        nullable=False,
    )
    payable_id = Column(Integer, nullable=False, index=True)
    payer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    gateway = Column(String, nullable=False)  # pesapal, stripe, mock
    method = Column(String, nullable=True)  # mpesa, card, ...
    status = Column(String, default=PaymentStatus.PENDING, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="KES")
    description = Column(String, nullable=True)
    external_reference = Column(String, unique=True, index=True, nullable=True)  # gateway tracking id
    order_reference = Column(String, unique=True, index=True, nullable=False)  # merchant reference
    transaction_id = Column(String, index=True, nullable=True)
    meta = Column(JSON, nullable=True)
    failure_reason = Column(String, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    refunded_by = Column(Integer, nullable=True)
    refund_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in PaymentStatus.TERMINAL

    @property
    def reference(self) -> str:
        """The id the gateway and the client know this payment by."""
        return self.external_reference or self.order_reference

    def __repr__(self):
        return f"<Payment(id={self.id}, payable={self.payable_type.value}:{self.payable_id}, status={self.status})>"
