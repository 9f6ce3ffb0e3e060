import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..config import config
from ..utils.errors import GatewayError
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)


class PaymentRequest(BaseModel):
    amount: Decimal
    currency: str
    order_reference: str
    description: str
    payable_type: str
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    callback_url: Optional[str] = None
    cancel_url: Optional[str] = None


class TransactionResult(BaseModel):
    success: bool
    transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class GatewayStatus(BaseModel):
    """Gateway-reported state of a transaction, normalized."""

    # completed, pending, failed, cancelled, invalid
    status: str
    transaction_id: Optional[str] = None
    method: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class PaymentGateway(ABC):
    """Uniform interface over an external payment processor.

    Declines come back as ``TransactionResult(success=False)``; transport and
    configuration problems raise ``GatewayError``.
    """

    name = "base"

    def __init__(self):
        self.timeout = config["GATEWAY_TIMEOUT_SECONDS"]
        self.breaker = CircuitBreaker(
            self.name,
            failure_threshold=config["GATEWAY_CB_FAILURE_THRESHOLD"],
            reset_timeout=config["GATEWAY_CB_RESET_SECONDS"],
        )

    @abstractmethod
    def initiate_payment(self, request: PaymentRequest) -> TransactionResult:
        ...

    @abstractmethod
    def check_status(self, transaction_id: str) -> GatewayStatus:
        ...

    @abstractmethod
    def refund(
        self,
        transaction_id: str,
        amount: Decimal,
        reason: str,
        confirmation_code: Optional[str] = None,
    ) -> TransactionResult:
        ...

    def call(self, operation: str, func, *args, **kwargs):
        """Run an outbound call through the circuit breaker."""
        if not self.breaker.can_execute():
            raise GatewayError(
                f"{self.name} gateway temporarily unavailable",
                {"gateway": self.name, "operation": operation},
            )
        try:
            result = func(*args, **kwargs)
        except GatewayError as e:
            if not e.declined:
                self.breaker.record_failure(e)
            raise
        self.breaker.record_success()
        return result


_registry = {}
_instances: Dict[str, PaymentGateway] = {}


def register_gateway(name: str, factory) -> None:
    _registry[name] = factory
    _instances.pop(name, None)


def get_gateway(name: Optional[str] = None) -> PaymentGateway:
    """Gateway instance by name; instances are shared so breaker state persists."""
    name = (name or config["PAYMENT_GATEWAY"]).lower()
    if name not in _instances:
        if not _registry:
            _register_defaults()
        factory = _registry.get(name)
        if factory is None:
            raise GatewayError(f"Unknown payment gateway: {name}", {"gateway": name})
        _instances[name] = factory()
    return _instances[name]


def reset_gateways() -> None:
    _instances.clear()


def _register_defaults() -> None:
    from .mock_gateway import MockGateway
    from .pesapal_gateway import PesapalGateway
    from .stripe_gateway import StripeGateway

    register_gateway(MockGateway.name, MockGateway)
    register_gateway(PesapalGateway.name, PesapalGateway)
    register_gateway(StripeGateway.name, StripeGateway)
