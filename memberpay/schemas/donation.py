from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from decimal import Decimal
from datetime import datetime

class DonationCreate(BaseModel):
    donor_name: str = Field(..., min_length=1)
    donor_email: EmailStr
    donor_phone: Optional[str] = None
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None
    reference: Optional[str] = None
    campaign_id: Optional[int] = None
    notes: Optional[str] = None

class Donation(BaseModel):
    id: int
    donor_name: str
    donor_email: str
    amount: Decimal
    currency: str
    status: str
    reference: str
    receipt_number: Optional[str] = None
    payment_date: Optional[datetime] = None
    campaign_id: Optional[int] = None

    class Config:
        from_attributes = True

class DonationCheckoutResponse(BaseModel):
    success: bool = True
    donation: Donation
    transaction_id: str
    redirect_url: Optional[str] = None
    expires_at: datetime
