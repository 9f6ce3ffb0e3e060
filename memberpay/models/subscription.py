from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from ..database import Base
from ..utils.clock import utcnow


class SubscriptionStatus:
    PAYMENT_PENDING = "payment_pending"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    CANCELLED = "cancelled"


class PlanSubscription(Base):
    __tablename__ = "plan_subscriptions"
    __table_args__ = (
        # At most one active subscription per user
        Index(
            "uq_plan_subscriptions_one_active_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    name = Column(String)
    billing_period = Column(String, default="month")  # month, year
    status = Column(String, default=SubscriptionStatus.PAYMENT_PENDING, nullable=False)
    starts_at = Column(DateTime)
    ends_at = Column(DateTime)
    canceled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
    enhancement = relationship("SubscriptionEnhancement", back_populates="subscription", uselist=False)

    def __repr__(self):
        return f"<PlanSubscription(id={self.id}, user_id={self.user_id}, status={self.status})>"
