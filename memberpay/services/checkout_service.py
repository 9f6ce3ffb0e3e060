import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment, PayableType
from ..models.pending_payment import PendingPayment
from ..utils.context import RequestContext
from ..utils.errors import GatewayError
from .audit_service import AuditService
from .payment_gateway import PaymentGateway, PaymentRequest, get_gateway
from .payment_store import PaymentStore
from .pending_payment_store import PendingPaymentStore

logger = logging.getLogger(__name__)


@dataclass
class PayerContact:
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class CheckoutResult:
    payment: Payment
    pending: PendingPayment
    redirect_url: Optional[str]
    transaction_id: str

    @property
    def expires_at(self) -> datetime:
        return self.pending.expires_at


class CheckoutService:
    """Single order-creation path shared by subscriptions, tickets and donations.

    Does not commit; the calling flow owns the transaction and rolls back
    the payable together with the payment if the gateway refuses.
    """

    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway or get_gateway()
        self.payments = PaymentStore(db)
        self.pending = PendingPaymentStore(db)

    def start(
        self,
        ctx: RequestContext,
        payable_type: PayableType,
        payable_id: int,
        amount: Decimal,
        currency: str,
        description: str,
        contact: PayerContact,
        payer_id: Optional[int] = None,
        metadata: Optional[dict] = None,
    ) -> CheckoutResult:
        payment = self.payments.create(
            payable_type=payable_type,
            payable_id=payable_id,
            gateway=self.gateway.name,
            amount=amount,
            currency=currency,
            payer_id=payer_id,
            description=description,
            meta=metadata,
        )

        request = PaymentRequest(
            amount=amount,
            currency=currency,
            order_reference=payment.order_reference,
            description=description,
            payable_type=payable_type.value,
            email=contact.email,
            phone=contact.phone,
            first_name=contact.first_name,
            last_name=contact.last_name,
        )
        result = self.gateway.initiate_payment(request)
        if not result.success or not result.transaction_id:
            logger.warning(
                "Gateway %s declined payment %s (%s): %s [correlation_id=%s]",
                self.gateway.name, payment.order_reference, payable_type.value, result.message, ctx.correlation_id,
            )
            raise GatewayError(
                result.message or "Payment could not be initiated",
                {"gateway": self.gateway.name, "order_reference": payment.order_reference},
                declined=True,
            )

        self.payments.attach_gateway_reference(payment, result.transaction_id, result.raw)
        pending = self.pending.create(payment, result.transaction_id, metadata={"redirect_url": result.redirect_url})

        AuditService(self.db).record(
            ctx,
            "payment.initiated",
            subject_type="payment",
            subject_id=payment.id,
            description=f"Initiated {payable_type.value} payment {payment.order_reference}",
            metadata={
                "gateway": self.gateway.name,
                "amount": str(amount),
                "currency": currency,
                "payable_id": payable_id,
                "transaction_id": result.transaction_id,
            },
        )
        logger.info(
            "Payment %s initiated via %s for %s:%s tracking=%s",
            payment.id, self.gateway.name, payable_type.value, payable_id, result.transaction_id,
        )
        return CheckoutResult(
            payment=payment,
            pending=pending,
            redirect_url=result.redirect_url,
            transaction_id=result.transaction_id,
        )
