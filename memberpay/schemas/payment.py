from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from datetime import datetime

from ..models.payment import PayableType

class CheckoutResponse(BaseModel):
    success: bool = True
    transaction_id: str
    order_reference: str
    redirect_url: Optional[str] = None
    amount: Decimal
    currency: str
    expires_at: datetime

class PaymentStatusResponse(BaseModel):
    transaction_id: str
    status: str
    amount: Decimal
    currency: str

class PaymentRecord(BaseModel):
    id: int
    payable_type: PayableType
    payable_id: int
    gateway: str
    method: Optional[str] = None
    status: str
    amount: Decimal
    currency: str
    description: Optional[str] = None
    order_reference: str
    external_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True

class WebhookAck(BaseModel):
    success: bool = True
    event_id: int

class ProcessOutcome(BaseModel):
    success: bool = True
    outcome: str
    status: Optional[str] = None
    message: Optional[str] = None

class MockCompleteRequest(BaseModel):
    phone: Optional[str] = None

class RefundRequest(BaseModel):
    reason: str
