import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..config import config
from ..database import get_db, get_session_factory
from ..models.payment import PaymentStatus
from ..models.user import User
from ..models.webhook_event import WebhookEvent
from ..schemas.payment import PaymentRecord, PaymentStatusResponse, ProcessOutcome, WebhookAck
from ..services.payment_store import PaymentStore
from ..services.stripe_gateway import parse_webhook
from ..services.webhook_processor import GatewayNotification, WebhookProcessor, process_event
from ..utils.auth import get_current_user
from ..utils.context import RequestContext, get_request_context
from ..utils.errors import InvalidRequestError, NotFoundError, PaymentError
from .mock_payments import require_mock_environment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

PROVIDERS = ("pesapal", "stripe", "mock")

# Stripe checkout events we act on, mapped to a reported status
STRIPE_EVENTS = {
    "checkout.session.completed": None,
    "checkout.session.async_payment_succeeded": "completed",
    "checkout.session.async_payment_failed": "failed",
    "checkout.session.expired": "cancelled",
}

CALLBACK_RESULTS = {
    PaymentStatus.PAID: "success",
    PaymentStatus.PENDING: "pending",
    PaymentStatus.FAILED: "failed",
    PaymentStatus.CANCELLED: "failed",
    PaymentStatus.REFUNDED: "failed",
}


@router.get("/status/{transaction_id}", response_model=PaymentStatusResponse)
def payment_status(transaction_id: str, db: Session = Depends(get_db)):
    """Public status lookup by any payment reference"""
    payment = PaymentStore(db).find_by_any_reference(transaction_id)
    if payment is None:
        raise NotFoundError("Payment not found", {"transaction_id": transaction_id})
    return PaymentStatusResponse(
        transaction_id=payment.reference,
        status=payment.status,
        amount=payment.amount,
        currency=payment.currency,
    )


@router.get("/callback")
def payment_callback(
    request: Request,
    db: Session = Depends(get_db),
):
    """Browser redirect target after checkout. Read-only: outcomes arrive by webhook."""
    params = request.query_params
    reference = (
        params.get("OrderTrackingId")
        or params.get("OrderMerchantReference")
        or params.get("session_id")
    )
    payment = PaymentStore(db).find_by_any_reference(reference) if reference else None
    result = CALLBACK_RESULTS.get(payment.status, "pending") if payment else "not_found"

    url = f"{config['FRONTEND_URL']}/payments/result?payment={result}"
    if payment:
        url += f"&reference={payment.order_reference}"
    return RedirectResponse(url, status_code=302)


@router.get("/history", response_model=List[PaymentRecord])
def payment_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return PaymentStore(db).history_for_user(current_user.id)


@router.api_route("/webhook/{provider}", methods=["GET", "POST"], response_model=WebhookAck)
async def payment_webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Store a gateway notification and acknowledge it; processing runs after the response."""
    provider = provider.lower()
    if provider not in PROVIDERS:
        raise NotFoundError("Unknown payment provider", {"provider": provider})
    if provider == "mock":
        require_mock_environment()

    if provider == "stripe":
        event = await _stripe_event(request)
    else:
        event = await _notification_event(provider, request)

    db.add(event)
    db.commit()
    db.refresh(event)

    if event.status == "received":
        background_tasks.add_task(process_event, session_factory, event.id)
    logger.info(
        "Webhook %s stored from %s for %s (%s)",
        event.id, provider, event.external_id or event.order_reference, event.event_type,
    )
    return WebhookAck(event_id=event.id)


async def _notification_event(provider: str, request: Request) -> WebhookEvent:
    data = dict(request.query_params)
    if request.method == "POST" and "json" in request.headers.get("content-type", ""):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError("Malformed notification body")
        if isinstance(body, dict):
            data.update(body)

    secret = config["WEBHOOK_SECRET"]
    if secret:
        token = data.pop("token", None) or request.headers.get("x-webhook-token")
        if token != secret:
            raise PaymentError("Invalid webhook token")

    tracking_id = data.get("OrderTrackingId") or data.get("orderTrackingId") or data.get("transaction_id")
    merchant_reference = data.get("OrderMerchantReference") or data.get("orderMerchantReference") or data.get("order_reference")
    if not tracking_id and not merchant_reference:
        raise InvalidRequestError("Missing order tracking id", {"OrderTrackingId": ["required"]})

    # Pesapal notifications carry only identifiers; the status is fetched from the gateway
    reported = None if provider == "pesapal" else data.get("status")
    return WebhookEvent(
        provider=provider,
        event_type=data.get("OrderNotificationType") or data.get("event") or "notification",
        external_id=tracking_id,
        order_reference=merchant_reference,
        payload={
            "status": reported,
            "transaction_id": data.get("transaction_id") if provider != "pesapal" else None,
            "method": data.get("method"),
            "message": data.get("message"),
            "params": data,
        },
    )


async def _stripe_event(request: Request) -> WebhookEvent:
    payload = await request.body()
    event = parse_webhook(payload, request.headers.get("stripe-signature"))
    session = event["data"]["object"]
    event_type = event["type"]

    stored = WebhookEvent(
        provider="stripe",
        event_type=event_type,
        external_id=session.get("id"),
        order_reference=session.get("client_reference_id"),
    )
    if event_type not in STRIPE_EVENTS:
        stored.status = "ignored"
        stored.payload = {"stripe_event_id": event["id"]}
        return stored

    status = STRIPE_EVENTS[event_type]
    if status is None:
        # completed sessions may still await an async payment method
        status = "completed" if session.get("payment_status") in ("paid", "no_payment_required") else "pending"
    stored.payload = {
        "status": status,
        "transaction_id": session.get("payment_intent"),
        "method": "card",
        "stripe_event_id": event["id"],
    }
    return stored


@router.post("/{transaction_id}/verify", response_model=ProcessOutcome)
def verify_payment(
    transaction_id: str,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_request_context),
):
    """Ask the gateway for the latest status and apply it"""
    result = WebhookProcessor(db).handle(GatewayNotification(reference=transaction_id), ctx)
    if result.payment is None:
        raise NotFoundError("Payment not found", {"transaction_id": transaction_id})
    return ProcessOutcome(outcome=result.outcome.value, status=result.payment.status)
