from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..schemas.event_order import CheckInRequest, EventOrder, EventOrderCheckoutResponse, EventOrderCreate
from ..services.event_order_service import EventOrderService, Purchaser
from ..utils.auth import get_current_admin_user, get_optional_user
from ..utils.context import RequestContext, get_request_context

router = APIRouter(prefix="/api", tags=["event_orders"])


@router.post("/events/{event_id}/orders", response_model=EventOrderCheckoutResponse)
def create_event_order(
    event_id: int,
    request: EventOrderCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    result = EventOrderService(db).create_order(
        ctx,
        event_id,
        request.quantity,
        Purchaser(name=request.name, email=request.email, phone=request.phone),
        promo_code=request.promo_code,
        user=current_user,
    )
    checkout = result.checkout
    return EventOrderCheckoutResponse(
        order=EventOrder.model_validate(result.order),
        transaction_id=checkout.transaction_id if checkout else None,
        redirect_url=checkout.redirect_url if checkout else None,
        expires_at=checkout.expires_at if checkout else None,
    )


@router.get("/event-orders/{reference}", response_model=EventOrder)
def get_event_order(reference: str, db: Session = Depends(get_db)):
    return EventOrderService(db).get_by_reference(reference)


@router.post("/event-orders/check-in", response_model=EventOrder)
def check_in(
    request: CheckInRequest,
    _: User = Depends(get_current_admin_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Check a ticket holder in by QR token (admin only)"""
    return EventOrderService(db).check_in(ctx, request.qr_code_token)
