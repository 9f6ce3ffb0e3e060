from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal
from datetime import datetime

class PlanBase(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    price: Decimal
    currency: str = "KES"
    invoice_period: str = "month"
    ticket_discount_percent: Decimal = Decimal("0")
    features: List[str] = []
    is_active: bool = True

class Plan(PlanBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True
