from pydantic import BaseModel, EmailStr
from typing import Literal, Optional
from datetime import datetime

from .payment import CheckoutResponse

class SubscriptionInitiate(BaseModel):
    plan_id: int
    billing_period: Literal["month", "year"] = "month"
    phone: Optional[str] = None
    email: Optional[EmailStr] = None

class SubscriptionCancel(BaseModel):
    reason: Optional[str] = None

class MockSubscriptionPayment(BaseModel):
    transaction_id: str
    phone: str

class Enhancement(BaseModel):
    status: str
    payment_failure_state: Optional[str] = None
    renewal_attempts: int = 0
    max_renewal_attempts: int = 3
    last_renewal_result: Optional[str] = None
    grace_period_ends_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class Subscription(BaseModel):
    id: int
    plan_id: int
    name: Optional[str] = None
    billing_period: str
    status: str
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    enhancement: Optional[Enhancement] = None

    class Config:
        from_attributes = True

class SubscriptionCheckoutResponse(CheckoutResponse):
    subscription_id: int
    renewal: bool = False
