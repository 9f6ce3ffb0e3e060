import re
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..config import config
from ..utils.references import random_code
from .payment_gateway import PaymentGateway, PaymentRequest, TransactionResult, GatewayStatus

FAILURE_NUMBERS = {
    "254709999999": "Card declined",
    "254708888888": "Insufficient funds",
}
PENDING_NUMBERS = {"254707777777"}
SUCCESS_NUMBERS = {"254701234567", "254702000000"}
SUCCESS_PATTERN = re.compile(r"^2547[0-5]")


@dataclass
class MockOutcome:
    status: str  # completed, pending, failed
    message: str


def normalize_phone(phone: Optional[str]) -> str:
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0") and len(digits) == 10:
        digits = "254" + digits[1:]
    return digits


def resolve_mock_outcome(phone: Optional[str]) -> MockOutcome:
    """Map a test phone number to a deterministic payment outcome.

    Failure numbers are checked before the success pattern so that
    254709999999 fails even though it matches ``^2547[0-5]``.
    """
    number = normalize_phone(phone)
    if number in FAILURE_NUMBERS:
        return MockOutcome("failed", FAILURE_NUMBERS[number])
    if number in PENDING_NUMBERS:
        return MockOutcome("pending", "Awaiting customer confirmation")
    if number in SUCCESS_NUMBERS or SUCCESS_PATTERN.match(number):
        return MockOutcome("completed", "Payment completed")
    return MockOutcome("failed", "Unrecognised test number")


class MockGateway(PaymentGateway):
    """Deterministic gateway for local and staging environments.

    Outcomes are driven through the mock payment endpoints, so a status
    query always reports the transaction as pending.
    """

    name = "mock"

    def initiate_payment(self, request: PaymentRequest) -> TransactionResult:
        kind = request.payable_type.upper().replace("_", "")
        tracking_id = f"MOCK-{kind}-{int(time.time())}-{random_code(5)}"
        return TransactionResult(
            success=True,
            transaction_id=tracking_id,
            redirect_url=f"{config['APP_URL']}/api/payments/mock/checkout/{tracking_id}",
            message="Mock checkout created",
            raw={"order_reference": request.order_reference, "amount": str(request.amount)},
        )

    def check_status(self, transaction_id: str) -> GatewayStatus:
        return GatewayStatus(status="pending", transaction_id=transaction_id, method="mock")

    def refund(self, transaction_id: str, amount: Decimal, reason: str, confirmation_code: Optional[str] = None) -> TransactionResult:
        return TransactionResult(
            success=True,
            transaction_id=f"REF-{random_code(10)}",
            message="Mock refund accepted",
            raw={"original_transaction_id": transaction_id, "amount": str(amount), "reason": reason},
        )
