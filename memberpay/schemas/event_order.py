from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from decimal import Decimal
from datetime import datetime

class EventOrderCreate(BaseModel):
    quantity: int = Field(1, ge=1)
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    promo_code: Optional[str] = None

class EventOrder(BaseModel):
    id: int
    event_id: int
    reference: str
    quantity: int
    unit_price: Decimal
    original_amount: Decimal
    promo_discount_amount: Decimal
    subscriber_discount_amount: Decimal
    total_amount: Decimal
    currency: str
    status: str
    receipt_number: Optional[str] = None
    qr_code_token: Optional[str] = None
    purchased_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class EventOrderCheckoutResponse(BaseModel):
    success: bool = True
    order: EventOrder
    transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    expires_at: Optional[datetime] = None

class CheckInRequest(BaseModel):
    qr_code_token: str
