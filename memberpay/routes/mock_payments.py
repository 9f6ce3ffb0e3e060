from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import config, MOCK_ENVIRONMENTS
from ..database import get_db
from ..schemas.payment import MockCompleteRequest, ProcessOutcome
from ..services.mock_checkout_service import MockCheckoutService
from ..utils.context import RequestContext, get_request_context
from ..utils.errors import ForbiddenError


def require_mock_environment():
    if config["APP_ENV"] not in MOCK_ENVIRONMENTS:
        raise ForbiddenError("Mock payments are disabled in this environment")


router = APIRouter(
    prefix="/api/payments/mock",
    tags=["mock_payments"],
    dependencies=[Depends(require_mock_environment)],
)


@router.get("/checkout/{reference}")
def mock_checkout(reference: str, db: Session = Depends(get_db)):
    """Details shown on the mock checkout page"""
    return MockCheckoutService(db).checkout_info(reference)


@router.post("/{reference}/complete", response_model=ProcessOutcome)
def complete_mock_payment(
    reference: str,
    body: Optional[MockCompleteRequest] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    outcome, result = MockCheckoutService(db).complete(ctx, reference, body.phone if body else None)
    return ProcessOutcome(
        outcome=result.outcome.value,
        status=result.payment.status if result.payment else None,
        message=outcome.message,
    )


@router.post("/{reference}/cancel", response_model=ProcessOutcome)
def cancel_mock_payment(
    reference: str,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    result = MockCheckoutService(db).cancel(ctx, reference)
    return ProcessOutcome(outcome=result.outcome.value, status=result.payment.status if result.payment else None)
