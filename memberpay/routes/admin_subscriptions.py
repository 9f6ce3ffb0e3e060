from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..services.subscription_service import SubscriptionService
from ..utils.auth import get_current_admin_user
from ..utils.context import RequestContext, get_request_context

router = APIRouter(prefix="/api/admin/subscriptions", tags=["admin_subscriptions"])


@router.post("/expire-lapsed")
def expire_lapsed_subscriptions(
    _: User = Depends(get_current_admin_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Start grace periods for lapsed subscriptions and cancel expired ones (admin only)"""
    counts = SubscriptionService(db).expire_lapsed(ctx)
    return {"success": True, **counts}
