from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric
from ..database import Base
from ..utils.clock import utcnow

class Donation(Base):
    __tablename__ = "donations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    donor_name = Column(String, nullable=False)
    donor_email = Column(String, nullable=False)
    donor_phone = Column(String, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, default="KES")
    status = Column(String, default="pending", nullable=False)  # pending, paid, failed, cancelled, refunded
    reference = Column(String, unique=True, index=True, nullable=False)
    receipt_number = Column(String, unique=True, nullable=True)
    payment_date = Column(DateTime, nullable=True)
    payment_id = Column(Integer, nullable=True)
    campaign_id = Column(Integer, nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
