import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ..models.donation import Donation
from ..models.payment import PayableType, PaymentStatus
from ..models.pending_payment import PendingPaymentStatus
from ..models.user import User
from ..utils.context import RequestContext
from ..utils.errors import ConflictError, ForbiddenError, NotFoundError
from ..utils.references import donation_reference
from .audit_service import AuditService
from .checkout_service import CheckoutResult, CheckoutService, PayerContact
from .payment_gateway import PaymentGateway
from .payment_store import PaymentStore
from .pending_payment_store import PendingPaymentStore

logger = logging.getLogger(__name__)


@dataclass
class DonationCheckout:
    donation: Donation
    checkout: CheckoutResult


class DonationService:
    def __init__(self, db: Session, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self.audit = AuditService(db)

    def create(
        self,
        ctx: RequestContext,
        donor_name: str,
        donor_email: str,
        amount: Decimal,
        currency: str,
        donor_phone: Optional[str] = None,
        reference: Optional[str] = None,
        campaign_id: Optional[int] = None,
        notes: Optional[str] = None,
        user: Optional[User] = None,
    ) -> DonationCheckout:
        if reference and self.db.query(Donation).filter(Donation.reference == reference).first():
            raise ConflictError("Donation reference already used", {"reference": reference})

        try:
            donation = Donation(
                user_id=user.id if user else None,
                donor_name=donor_name,
                donor_email=donor_email,
                donor_phone=donor_phone,
                amount=amount,
                currency=currency,
                status="pending",
                reference=reference or donation_reference(),
                campaign_id=campaign_id,
                notes=notes,
            )
            self.db.add(donation)
            self.db.flush()

            first_name, _, last_name = donor_name.partition(" ")
            checkout = CheckoutService(self.db, self.gateway).start(
                ctx,
                PayableType.DONATION,
                donation.id,
                Decimal(amount),
                currency,
                f"Donation {donation.reference}",
                PayerContact(email=donor_email, phone=donor_phone, first_name=first_name, last_name=last_name),
                payer_id=user.id if user else None,
                metadata={"campaign_id": campaign_id, "payer_phone": donor_phone},
            )

            self.audit.record(
                ctx,
                "donation.created",
                subject_type="donation",
                subject_id=donation.id,
                description=f"Donation of {amount} {currency} started",
                metadata={"reference": donation.reference, "payment_id": checkout.payment.id},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Donation %s created for %s %s", donation.reference, amount, currency)
        return DonationCheckout(donation=donation, checkout=checkout)

    def get_by_reference(self, reference: str) -> Donation:
        donation = self.db.query(Donation).filter(Donation.reference == reference).first()
        if donation is None:
            raise NotFoundError("Donation not found", {"reference": reference})
        return donation

    def cancel(self, ctx: RequestContext, reference: str, user: Optional[User] = None) -> Donation:
        """Withdraw a donation that has not been paid yet."""
        payments = PaymentStore(self.db)
        pending_store = PendingPaymentStore(self.db)
        try:
            donation = (
                self.db.query(Donation)
                .filter(Donation.reference == reference)
                .with_for_update()
                .first()
            )
            if donation is None:
                raise NotFoundError("Donation not found", {"reference": reference})
            if donation.user_id and (user is None or (user.id != donation.user_id and user.role != "admin")):
                raise ForbiddenError("You cannot cancel this donation")
            if donation.status != "pending":
                raise ConflictError(f"Donation is already {donation.status}", {"status": donation.status})

            for payment in payments.for_payable(PayableType.DONATION, donation.id):
                if payment.status != PaymentStatus.PENDING:
                    continue
                payment = payments.get(payment.id, lock=True)
                payments.mark_cancelled(payment, "Donation cancelled by donor")
                pending_store.mark(pending_store.find_for_payment(payment), PendingPaymentStatus.CANCELLED)

            donation.status = "cancelled"
            self.audit.record(
                ctx,
                "donation.cancelled",
                subject_type="donation",
                subject_id=donation.id,
                description=f"Donation {donation.reference} cancelled",
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return donation
