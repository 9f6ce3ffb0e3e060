from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, JSON
from ..database import Base
from ..utils.clock import utcnow

class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    type = Column(String, default="percent")  # percent, fixed
    value = Column(Numeric(12, 2), nullable=False)
    is_active = Column(Boolean, default=True)
    expires_at = Column(DateTime, nullable=True)
    max_uses = Column(Integer, nullable=True)
    times_used = Column(Integer, default=0, nullable=False)
    applicable_event_ids = Column(JSON, nullable=True)  # None means all events
    created_at = Column(DateTime, default=utcnow)

    def is_valid_for(self, event_id: int, now=None) -> bool:
        if not self.is_active:
            return False
        if self.expires_at is not None and (now or utcnow()) > self.expires_at:
            return False
        if self.max_uses is not None and self.times_used >= self.max_uses:
            return False
        if self.applicable_event_ids and event_id not in self.applicable_event_ids:
            return False
        return True
