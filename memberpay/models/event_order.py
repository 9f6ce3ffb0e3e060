from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow

class EventOrder(Base):
    __tablename__ = "event_orders"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    guest_name = Column(String, nullable=True)
    guest_email = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    quantity = Column(Integer, default=1, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    original_amount = Column(Numeric(12, 2), nullable=False)
    promo_code_id = Column(Integer, ForeignKey("promo_codes.id"), nullable=True)
    promo_discount_amount = Column(Numeric(12, 2), default=0)
    subscriber_discount_amount = Column(Numeric(12, 2), default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="KES")
    status = Column(String, default="pending", nullable=False)  # pending, paid, failed, refunded
    reference = Column(String, unique=True, index=True, nullable=False)
    receipt_number = Column(String, unique=True, nullable=True)
    qr_code_token = Column(String, unique=True, index=True, nullable=False)
    payment_id = Column(Integer, nullable=True)
    purchased_at = Column(DateTime, nullable=True)
    checked_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    event = relationship("Event", back_populates="orders")
    promo_code = relationship("PromoCode")
