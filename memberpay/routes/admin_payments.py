from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..schemas.payment import PaymentRecord, RefundRequest
from ..services.refund_service import RefundService
from ..services.webhook_processor import WebhookProcessor
from ..utils.auth import get_current_admin_user
from ..utils.context import RequestContext, get_request_context

router = APIRouter(prefix="/api/admin/payments", tags=["admin_payments"])


@router.post("/expire-stale")
def expire_stale_payments(
    _: User = Depends(get_current_admin_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Cancel pending checkouts whose session has expired (admin only)"""
    expired = WebhookProcessor(db).expire_stale(ctx)
    return {"success": True, "expired": expired}


@router.post("/{reference}/refund", response_model=PaymentRecord)
def refund_payment(
    reference: str,
    request: RefundRequest,
    _: User = Depends(get_current_admin_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Refund a paid payment (admin only)"""
    return RefundService(db).refund(ctx, reference, request.reason)
