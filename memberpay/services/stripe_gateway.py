import logging
from decimal import Decimal
from typing import Optional

import stripe

from ..config import config
from ..utils.errors import GatewayError
from .payment_gateway import PaymentGateway, PaymentRequest, TransactionResult, GatewayStatus

logger = logging.getLogger(__name__)

# Currencies Stripe expects in whole units rather than cents
ZERO_DECIMAL_CURRENCIES = {"jpy", "krw", "vnd", "ugx", "rwf"}


def to_minor_units(amount: Decimal, currency: str) -> int:
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount)
    return int((amount * 100).quantize(Decimal("1")))


class StripeGateway(PaymentGateway):
    """Stripe Checkout: one session per payment, looked up by session id."""

    name = "stripe"

    def __init__(self):
        super().__init__()
        stripe.api_key = config["STRIPE_SECRET_KEY"]

    def _stripe(self, operation: str, func, *args, **kwargs):
        def invoke():
            try:
                return func(*args, **kwargs)
            except stripe.error.CardError as e:
                raise GatewayError(e.user_message or str(e), {"operation": operation}, declined=True)
            except stripe.error.InvalidRequestError as e:
                raise GatewayError(str(e), {"operation": operation}, declined=True)
            except stripe.error.StripeError as e:
                logger.error("Stripe %s failed: %s", operation, e)
                raise GatewayError("Stripe request failed", {"operation": operation})

        return self.call(operation, invoke)

    def initiate_payment(self, request: PaymentRequest) -> TransactionResult:
        success_url = request.callback_url or f"{config['APP_URL']}/api/payments/callback"
        cancel_url = request.cancel_url or f"{config['FRONTEND_URL']}/payments/result?payment=cancelled"
        session = self._stripe(
            "checkout.create",
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": request.currency.lower(),
                    "unit_amount": to_minor_units(request.amount, request.currency),
                    "product_data": {"name": request.description},
                },
                "quantity": 1,
            }],
            success_url=f"{success_url}?OrderTrackingId={{CHECKOUT_SESSION_ID}}&OrderMerchantReference={request.order_reference}",
            cancel_url=cancel_url,
            customer_email=request.email,
            client_reference_id=request.order_reference,
            metadata={"order_reference": request.order_reference, "payable_type": request.payable_type},
        )
        return TransactionResult(
            success=True,
            transaction_id=session.id,
            redirect_url=session.url,
            raw={"session_id": session.id},
        )

    def check_status(self, transaction_id: str) -> GatewayStatus:
        session = self._stripe("checkout.retrieve", stripe.checkout.Session.retrieve, transaction_id)
        return GatewayStatus(
            status=session_status(session.status, session.payment_status),
            transaction_id=session.id,
            method="card",
            raw={"status": session.status, "payment_status": session.payment_status,
                 "payment_intent": session.payment_intent},
        )

    def refund(self, transaction_id: str, amount: Decimal, reason: str, confirmation_code: Optional[str] = None) -> TransactionResult:
        session = self._stripe("checkout.retrieve", stripe.checkout.Session.retrieve, transaction_id)
        if not session.payment_intent:
            return TransactionResult(success=False, message="Checkout session has no payment to refund")
        currency = session.currency or config["DEFAULT_CURRENCY"]
        refund = self._stripe(
            "refund.create",
            stripe.Refund.create,
            payment_intent=session.payment_intent,
            amount=to_minor_units(amount, currency),
            metadata={"reason": reason},
        )
        return TransactionResult(
            success=refund.status in ("succeeded", "pending"),
            transaction_id=refund.id,
            message=refund.status,
            raw={"refund_id": refund.id, "status": refund.status},
        )


def session_status(status: Optional[str], payment_status: Optional[str]) -> str:
    if payment_status in ("paid", "no_payment_required"):
        return "completed"
    if status == "expired":
        return "cancelled"
    return "pending"


def parse_webhook(payload: bytes, signature: Optional[str]):
    """Verify a Stripe webhook signature and return the event."""
    secret = config["STRIPE_WEBHOOK_SECRET"]
    if not secret:
        raise GatewayError("Stripe webhook secret is not configured", declined=True)
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.error.SignatureVerificationError):
        raise GatewayError("Invalid Stripe signature", declined=True)
