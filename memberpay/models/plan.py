from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, JSON
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow

class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)  # price per invoice period
    currency = Column(String, default="KES")
    invoice_period = Column(String, default="month")  # month, year
    ticket_discount_percent = Column(Numeric(5, 2), default=0)  # discount on paid event tickets
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    subscriptions = relationship("PlanSubscription", back_populates="plan")
