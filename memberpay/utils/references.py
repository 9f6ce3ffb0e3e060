import secrets
import string
from datetime import datetime
from typing import Optional

from .clock import utcnow

ALPHANUMERIC = string.ascii_uppercase + string.digits

# Order reference prefixes per payable kind
ORDER_PREFIXES = {
    "subscription": "SUB",
    "event_order": "ORD",
    "donation": "DON",
}


def random_code(length: int) -> str:
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def order_reference(payable_kind: str, payable_id: int) -> str:
    """Merchant reference sent to the gateway, e.g. SUB-42-8F3K2QZ1."""
    prefix = ORDER_PREFIXES.get(payable_kind, "PAY")
    return f"{prefix}-{payable_id}-{random_code(8)}"


def event_order_reference() -> str:
    return f"ORD-{random_code(12)}"


def donation_reference() -> str:
    return f"DON-{random_code(12)}"


def receipt_number(prefix: str, when: Optional[datetime] = None) -> str:
    when = when or utcnow()
    return f"{prefix}-{when.strftime('%Y%m%d')}-{random_code(6)}"


def qr_code_token() -> str:
    return f"TKT-{random_code(16)}"
