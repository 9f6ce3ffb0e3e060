from sqlalchemy import Column, Integer, String, DateTime, JSON
from ..database import Base
from ..utils.clock import utcnow

class WebhookEvent(Base):
    """Raw gateway notification, stored before processing."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False)  # pesapal, stripe, mock
    event_type = Column(String, nullable=True)
    external_id = Column(String, index=True, nullable=True)
    order_reference = Column(String, nullable=True)
    payload = Column(JSON, nullable=True)
    status = Column(String, default="received", nullable=False)  # received, processed, failed, ignored
    outcome = Column(String, nullable=True)
    error = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
