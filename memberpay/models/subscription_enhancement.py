from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow

class SubscriptionEnhancement(Base):
    """Payment-lifecycle state attached one-to-one to a PlanSubscription."""

    __tablename__ = "subscription_enhancements"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("plan_subscriptions.id"), unique=True, nullable=False)
    status = Column(String, default="payment_pending", nullable=False)  # payment_pending, active, grace_period, cancelled
    payment_failure_state = Column(String, nullable=True)
    max_renewal_attempts = Column(Integer, default=3)
    renewal_attempts = Column(Integer, default=0)
    last_renewal_result = Column(String, nullable=True)  # success, failed
    last_renewal_error = Column(String, nullable=True)
    last_renewal_attempt_at = Column(DateTime, nullable=True)
    grace_period_started_at = Column(DateTime, nullable=True)
    grace_period_ends_at = Column(DateTime, nullable=True)
    enhancement_metadata = Column(JSON, nullable=True)  # previous_subscription_id, last_activated_payment_id
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    subscription = relationship("PlanSubscription", back_populates="enhancement")

    def get_meta(self, key, default=None):
        return (self.enhancement_metadata or {}).get(key, default)

    def set_meta(self, key, value) -> None:
        # Reassign so the JSON column is flagged dirty
        data = dict(self.enhancement_metadata or {})
        data[key] = value
        self.enhancement_metadata = data
