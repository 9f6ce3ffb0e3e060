from sqlalchemy import Column, Integer, String, DateTime, JSON

from ..database import Base
from ..utils.clock import utcnow

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True)  # None for gateway/system actions
    action = Column(String, nullable=False)  # e.g. 'payment.paid', 'subscription.cancelled'
    subject_type = Column(String, nullable=True)
    subject_id = Column(Integer, nullable=True)
    description = Column(String)
    audit_metadata = Column(JSON, nullable=True)
    ip_address = Column(String)
    user_agent = Column(String)
    correlation_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action={self.action}, subject={self.subject_type}:{self.subject_id})>"
