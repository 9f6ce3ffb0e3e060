from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.user import User
from ..schemas.payment import ProcessOutcome
from ..schemas.plan import Plan as PlanSchema
from ..schemas.subscription import (
    MockSubscriptionPayment,
    Subscription,
    SubscriptionCancel,
    SubscriptionCheckoutResponse,
    SubscriptionInitiate,
)
from ..services.checkout_service import PayerContact
from ..services.subscription_service import SubscriptionService
from ..utils.auth import get_current_user
from ..utils.context import RequestContext, get_request_context
from .mock_payments import require_mock_environment

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.post("/initiate", response_model=SubscriptionCheckoutResponse)
def initiate_subscription(
    request: SubscriptionInitiate,
    current_user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Start (or renew) a subscription and return the gateway redirect"""
    result = SubscriptionService(db).initiate(
        ctx,
        current_user,
        request.plan_id,
        request.billing_period,
        PayerContact(email=request.email, phone=request.phone),
    )
    payment = result.checkout.payment
    return SubscriptionCheckoutResponse(
        subscription_id=result.subscription.id,
        renewal=result.renewal,
        transaction_id=result.checkout.transaction_id,
        order_reference=payment.order_reference,
        redirect_url=result.checkout.redirect_url,
        amount=payment.amount,
        currency=payment.currency,
        expires_at=result.checkout.expires_at,
    )


@router.post("/cancel")
def cancel_subscription(
    request: SubscriptionCancel,
    current_user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionService(db).cancel(ctx, current_user, request.reason)
    return {"success": True, "subscription": Subscription.model_validate(subscription)}


@router.get("/current")
def current_subscription(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    subscription = SubscriptionService(db).current(current_user)
    if subscription is None:
        return {"subscription": None, "plan": None}
    return {
        "subscription": Subscription.model_validate(subscription),
        "plan": PlanSchema.model_validate(subscription.plan),
    }


@router.post(
    "/mock-payment",
    response_model=ProcessOutcome,
    dependencies=[Depends(require_mock_environment)],
)
def mock_subscription_payment(
    request: MockSubscriptionPayment,
    current_user: User = Depends(get_current_user),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """Resolve a mock subscription payment from a test phone number"""
    outcome, result = SubscriptionService(db).process_mock_outcome(ctx, request.transaction_id, request.phone)
    return ProcessOutcome(
        outcome=result.outcome.value,
        status=result.payment.status if result.payment else None,
        message=outcome.message,
    )
