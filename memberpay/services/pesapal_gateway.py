import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from ..config import config
from ..utils.clock import utcnow
from ..utils.errors import GatewayError
from .payment_gateway import PaymentGateway, PaymentRequest, TransactionResult, GatewayStatus

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "COMPLETED": "completed",
    "PENDING": "pending",
    "FAILED": "failed",
    "INVALID": "invalid",
    "REVERSED": "cancelled",
}
# GetTransactionStatus also returns a numeric status_code
STATUS_CODE_MAP = {0: "invalid", 1: "completed", 2: "failed", 3: "cancelled"}


class PesapalGateway(PaymentGateway):
    """Pesapal API 3.0 client."""

    name = "pesapal"

    def __init__(self, settings: Optional[Dict[str, Any]] = None, session: Optional[requests.Session] = None):
        super().__init__()
        settings = settings or config["PESAPAL"]
        self.base_url = settings["BASE_URL"].rstrip("/")
        self.consumer_key = settings["CONSUMER_KEY"]
        self.consumer_secret = settings["CONSUMER_SECRET"]
        self.ipn_id = settings.get("IPN_ID") or None
        self.ipn_url = settings["IPN_URL"]
        self.callback_url = settings["CALLBACK_URL"]
        self.http = session or requests.Session()
        self._token = None
        self._token_expires_at = None

    def _send(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Pesapal %s %s failed: %s", method, path, e)
            raise GatewayError("Could not reach Pesapal", {"path": path})

        if response.status_code >= 500:
            raise GatewayError(f"Pesapal returned HTTP {response.status_code}", {"path": path})
        try:
            data = response.json()
        except ValueError:
            raise GatewayError("Pesapal returned an unreadable response", {"path": path})
        if response.status_code >= 400:
            message = _error_message(data) or f"HTTP {response.status_code}"
            raise GatewayError(f"Pesapal rejected the request: {message}", {"path": path}, declined=True)
        return data if isinstance(data, dict) else {"items": data}

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        return self.call(path, self._send, method, path, token, **kwargs)

    def get_token(self) -> str:
        now = utcnow()
        if self._token and self._token_expires_at and now < self._token_expires_at:
            return self._token

        if not self.consumer_key or not self.consumer_secret:
            raise GatewayError("Pesapal credentials are not configured")

        data = self._request(
            "POST",
            "/Auth/RequestToken",
            json={"consumer_key": self.consumer_key, "consumer_secret": self.consumer_secret},
        )
        token = data.get("token")
        if not token:
            raise GatewayError(f"Pesapal authentication failed: {_error_message(data) or 'no token'}")

        self._token = token
        # Tokens live five minutes; refresh a little early
        self._token_expires_at = now + timedelta(minutes=4)
        return token

    def get_ipn_id(self) -> str:
        if self.ipn_id:
            return self.ipn_id
        token = self.get_token()

        listing = self._request("GET", "/URLSetup/GetIpnList", token=token)
        for item in listing.get("items", []):
            if item.get("url") == self.ipn_url and item.get("ipn_id"):
                self.ipn_id = item["ipn_id"]
                return self.ipn_id

        registered = self._request(
            "POST",
            "/URLSetup/RegisterIPN",
            token=token,
            json={"url": self.ipn_url, "ipn_notification_type": "GET"},
        )
        if not registered.get("ipn_id"):
            raise GatewayError(f"Pesapal IPN registration failed: {_error_message(registered) or 'no ipn_id'}")
        self.ipn_id = registered["ipn_id"]
        logger.info("Registered Pesapal IPN %s for %s", self.ipn_id, self.ipn_url)
        return self.ipn_id

    def initiate_payment(self, request: PaymentRequest) -> TransactionResult:
        token = self.get_token()
        payload = {
            "id": request.order_reference,
            "currency": request.currency,
            "amount": float(request.amount),
            "description": request.description[:100],
            "callback_url": request.callback_url or self.callback_url,
            "notification_id": self.get_ipn_id(),
            "billing_address": {
                "email_address": request.email,
                "phone_number": request.phone,
                "country_code": "KE",
                "first_name": request.first_name,
                "last_name": request.last_name,
            },
        }
        if request.cancel_url:
            payload["cancellation_url"] = request.cancel_url

        data = self._request("POST", "/Transactions/SubmitOrderRequest", token=token, json=payload)
        if data.get("error") or not data.get("order_tracking_id"):
            return TransactionResult(
                success=False,
                message=_error_message(data) or "Failed to submit order",
                raw=data,
            )
        return TransactionResult(
            success=True,
            transaction_id=data["order_tracking_id"],
            redirect_url=data.get("redirect_url"),
            raw=data,
        )

    def check_status(self, transaction_id: str) -> GatewayStatus:
        token = self.get_token()
        data = self._request(
            "GET",
            "/Transactions/GetTransactionStatus",
            token=token,
            params={"orderTrackingId": transaction_id},
        )
        return GatewayStatus(
            status=normalize_status(data),
            transaction_id=data.get("order_tracking_id") or transaction_id,
            method=data.get("payment_method"),
            message=data.get("payment_status_description"),
            raw=data,
        )

    def refund(self, transaction_id: str, amount: Decimal, reason: str, confirmation_code: Optional[str] = None) -> TransactionResult:
        if not confirmation_code:
            return TransactionResult(success=False, message="Missing Pesapal confirmation code for refund")
        token = self.get_token()
        data = self._request(
            "POST",
            "/Transactions/RefundRequest",
            token=token,
            json={
                "confirmation_code": confirmation_code,
                "amount": float(amount),
                "username": "memberpay",
                "remarks": reason,
            },
        )
        ok = str(data.get("status")) == "200"
        return TransactionResult(
            success=ok,
            transaction_id=transaction_id,
            message=data.get("message") or _error_message(data),
            raw=data,
        )


def normalize_status(data: Dict[str, Any]) -> str:
    status = data.get("status")
    if isinstance(status, str) and status.upper() in STATUS_MAP:
        return STATUS_MAP[status.upper()]
    description = (data.get("payment_status_description") or "").upper()
    if description in STATUS_MAP:
        return STATUS_MAP[description]
    code = data.get("status_code")
    if code is not None:
        try:
            return STATUS_CODE_MAP.get(int(code), "pending")
        except (TypeError, ValueError):
            pass
    return "pending"


def _error_message(data: Dict[str, Any]) -> Optional[str]:
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("message") or error.get("code")
    return error
