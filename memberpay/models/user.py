from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    first_name = Column(String)
    last_name = Column(String)
    phone = Column(String, nullable=True)
    role = Column(String, default='user')  # user, admin

    # Denormalized view of the active subscription, kept in sync on activation/cancel
    subscription_status = Column(String, nullable=True)  # active, grace_period
    active_subscription_id = Column(Integer, nullable=True)
    subscription_activated_at = Column(DateTime, nullable=True)
    last_payment_date = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    profile = relationship("MemberProfile", back_populates="user", uselist=False)
    subscriptions = relationship("PlanSubscription", back_populates="user")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)
