from datetime import timedelta
from decimal import Decimal

import pytest
import requests

from memberpay.services import circuit_breaker as circuit_breaker_module
from memberpay.services.circuit_breaker import CircuitBreaker, CircuitState
from memberpay.services.mock_gateway import MockGateway, resolve_mock_outcome
from memberpay.services.payment_gateway import PaymentRequest, get_gateway
from memberpay.services.pesapal_gateway import PesapalGateway, normalize_status
from memberpay.services.stripe_gateway import StripeGateway
from memberpay.utils.clock import utcnow
from memberpay.utils.errors import GatewayError


@pytest.mark.parametrize("phone, status", [
    ("254709999999", "failed"),
    ("254708888888", "failed"),
    ("254707777777", "pending"),
    ("254701234567", "completed"),
    ("254702000000", "completed"),
    ("254712345678", "completed"),
    ("0712345678", "completed"),
    ("254799999999", "failed"),
    ("255712345678", "failed"),
])
def test_mock_phone_outcomes(phone, status):
    assert resolve_mock_outcome(phone).status == status


def test_failure_numbers_win_over_success_pattern():
    outcome = resolve_mock_outcome("254709999999")
    assert outcome.status == "failed"
    assert outcome.message == "Card declined"


def test_unknown_number_fails_deterministically():
    assert resolve_mock_outcome("12345").message == "Unrecognised test number"


def test_mock_gateway_tracking_id():
    request = PaymentRequest(
        amount=Decimal("2500"),
        currency="KES",
        order_reference="SUB-1-ABCDEFGH",
        description="Professional subscription",
        payable_type="event_order",
    )
    result = MockGateway().initiate_payment(request)

    assert result.success
    assert result.transaction_id.startswith("MOCK-EVENTORDER-")
    assert result.redirect_url.endswith(f"/api/payments/mock/checkout/{result.transaction_id}")


def test_get_gateway_by_name_is_shared():
    assert isinstance(get_gateway(), MockGateway)
    assert isinstance(get_gateway("stripe"), StripeGateway)
    assert get_gateway("pesapal") is get_gateway("PESAPAL")


def test_get_gateway_unknown_name():
    with pytest.raises(GatewayError):
        get_gateway("paypal")


def test_circuit_breaker_opens_and_half_opens(monkeypatch):
    breaker = CircuitBreaker("test", failure_threshold=2, reset_timeout=30)
    breaker.record_failure(RuntimeError("boom"))
    assert breaker.can_execute()
    breaker.record_failure(RuntimeError("boom"))
    assert breaker.state == CircuitState.OPEN
    assert not breaker.can_execute()

    later = utcnow() + timedelta(seconds=31)
    monkeypatch.setattr(circuit_breaker_module, "utcnow", lambda: later)
    assert breaker.can_execute()
    assert breaker.state == CircuitState.HALF_OPEN

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED


def test_half_open_failure_reopens():
    breaker = CircuitBreaker("test", failure_threshold=1, reset_timeout=0)
    breaker.record_failure()
    assert breaker.can_execute()
    assert breaker.state == CircuitState.HALF_OPEN
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data

    def json(self):
        return self._data


class FakeSession:
    """Answers Pesapal endpoints by path, recording every call."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, **kwargs):
        path = url.split("/api", 1)[1]
        self.calls.append((method, path, kwargs, timeout))
        answer = self.routes[path]
        if isinstance(answer, Exception):
            raise answer
        return answer


PESAPAL_SETTINGS = {
    "BASE_URL": "https://cybqa.pesapal.com/pesapalv3/api",
    "CONSUMER_KEY": "key",
    "CONSUMER_SECRET": "secret",
    "IPN_ID": "",
    "IPN_URL": "http://api.test/api/payments/webhook/pesapal",
    "CALLBACK_URL": "http://api.test/api/payments/callback",
}


def pesapal(routes):
    session = FakeSession(routes)
    return PesapalGateway(settings=PESAPAL_SETTINGS, session=session), session


def test_pesapal_submit_order():
    gateway, session = pesapal({
        "/Auth/RequestToken": FakeResponse(200, {"token": "tok", "status": "200"}),
        "/URLSetup/GetIpnList": FakeResponse(200, []),
        "/URLSetup/RegisterIPN": FakeResponse(200, {"ipn_id": "ipn-1"}),
        "/Transactions/SubmitOrderRequest": FakeResponse(200, {
            "order_tracking_id": "track-1",
            "merchant_reference": "SUB-1-XYZ",
            "redirect_url": "https://pay.test/redirect",
            "status": "200",
        }),
    })
    request = PaymentRequest(
        amount=Decimal("2500"),
        currency="KES",
        order_reference="SUB-1-XYZ",
        description="Professional subscription",
        payable_type="subscription",
        email="member@example.com",
        phone="254712345678",
    )

    result = gateway.initiate_payment(request)

    assert result.success
    assert result.transaction_id == "track-1"
    assert result.redirect_url == "https://pay.test/redirect"
    submitted = session.calls[-1][2]["json"]
    assert submitted["notification_id"] == "ipn-1"
    assert submitted["billing_address"]["country_code"] == "KE"
    assert all(call[3] == gateway.timeout for call in session.calls)


def test_pesapal_submit_order_error_is_a_decline():
    gateway, _ = pesapal({
        "/Auth/RequestToken": FakeResponse(200, {"token": "tok"}),
        "/URLSetup/GetIpnList": FakeResponse(200, [{"url": PESAPAL_SETTINGS["IPN_URL"], "ipn_id": "ipn-9"}]),
        "/Transactions/SubmitOrderRequest": FakeResponse(200, {"error": {"message": "Invalid amount"}}),
    })
    request = PaymentRequest(
        amount=Decimal("1"), currency="KES", order_reference="DON-1-A",
        description="Donation", payable_type="donation",
    )

    result = gateway.initiate_payment(request)

    assert not result.success
    assert result.message == "Invalid amount"
    assert gateway.ipn_id == "ipn-9"


def test_pesapal_check_status():
    gateway, _ = pesapal({
        "/Auth/RequestToken": FakeResponse(200, {"token": "tok"}),
        "/Transactions/GetTransactionStatus": FakeResponse(200, {
            "order_tracking_id": "track-1",
            "status": "COMPLETED",
            "confirmation_code": "AA11BB22",
            "payment_method": "MPESA",
            "payment_status_description": "Completed",
        }),
    })

    status = gateway.check_status("track-1")

    assert status.status == "completed"
    assert status.method == "MPESA"
    assert status.raw["confirmation_code"] == "AA11BB22"


def test_pesapal_transport_errors_open_the_breaker():
    gateway, _ = pesapal({"/Auth/RequestToken": requests.ConnectionError("down")})
    gateway.breaker.failure_threshold = 2

    for _ in range(2):
        with pytest.raises(GatewayError):
            gateway.get_token()

    assert gateway.breaker.state == CircuitState.OPEN
    with pytest.raises(GatewayError, match="temporarily unavailable"):
        gateway.get_token()


@pytest.mark.parametrize("data, expected", [
    ({"status": "FAILED"}, "failed"),
    ({"status": "INVALID"}, "invalid"),
    ({"status_code": 1}, "completed"),
    ({"status_code": 3}, "cancelled"),
    ({}, "pending"),
])
def test_pesapal_status_normalization(data, expected):
    assert normalize_status(data) == expected
