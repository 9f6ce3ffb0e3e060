from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow

class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    status = Column(String, default="draft")  # draft, published
    is_paid = Column(Boolean, default=False)
    price = Column(Numeric(12, 2), default=0)
    currency = Column(String, default="KES")
    capacity = Column(Integer, nullable=True)  # None means unlimited
    starts_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    orders = relationship("EventOrder", back_populates="event")
