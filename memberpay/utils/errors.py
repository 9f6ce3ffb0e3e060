from enum import Enum
from typing import Any, Dict, Optional


class PaymentErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    GATEWAY = "gateway_error"
    ACTIVATION = "activation_error"
    INVALID_REQUEST = "invalid_request"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"


class PaymentError(Exception):
    """Base error for the payment lifecycle. Routes map `kind` to an HTTP status."""

    kind = PaymentErrorKind.INVALID_REQUEST
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(PaymentError):
    kind = PaymentErrorKind.NOT_FOUND
    status_code = 404


class GatewayError(PaymentError):
    """Gateway rejected the request or could not be reached."""

    kind = PaymentErrorKind.GATEWAY
    status_code = 502

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, declined: bool = False):
        super().__init__(message, details)
        # A decline is the gateway answering "no", not a transport failure
        self.declined = declined
        if declined:
            self.status_code = 400


class ActivationError(PaymentError):
    kind = PaymentErrorKind.ACTIVATION
    status_code = 500


class InvalidRequestError(PaymentError):
    kind = PaymentErrorKind.INVALID_REQUEST
    status_code = 422


class ConflictError(PaymentError):
    kind = PaymentErrorKind.CONFLICT
    status_code = 409


class ForbiddenError(PaymentError):
    kind = PaymentErrorKind.FORBIDDEN
    status_code = 403
