import threading
import time
from decimal import Decimal
from unittest.mock import NonCallableMagicMock, patch

import pytest
import requests

from app.services.qpay_client import (
    QPayClient,
    QPayConfig,
    TokenProvider,
    QPayAuthError,
    QPayCheckError,
    QPayCredentialsMissing,
    QPayInvoiceError,
    PAGE_LIMIT,
)

BASE = "https://merchant-sandbox.qpay.mn"


def _cfg(**overrides):
    values = dict(base_url=BASE, client_id="cid", client_secret="secret", invoice_code="CLINIC_INVOICE", token_ttl_seconds=3000)
    values.update(overrides)
    return QPayConfig(**values)


def _response(status_code=200, payload=None):
    r = NonCallableMagicMock()
    r.status_code = status_code
    r.text = "body" if payload is not None else ""
    r.json.return_value = payload if payload is not None else {}
    return r


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class Gateway:
    """Routes fake HTTP calls by path and counts them."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def __call__(self, method, url, **kwargs):
        path = url[len(BASE):]
        self.calls.append((method, path, kwargs))
        handler = self.routes[(method, path)]
        return handler(kwargs) if callable(handler) else handler

    def count(self, method, path):
        return sum(1 for m, p, _ in self.calls if m == method and p == path)


AUTH_OK = _response(200, {"access_token": "tok-1", "expires_in": 3600})


class TestTokenProvider:
    def test_token_is_cached_until_expiry(self):
        clock = FakeClock()
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            tokens = TokenProvider(_cfg(), clock=clock)
            assert tokens.get_token() == "tok-1"
            clock.now += 3000
            assert tokens.get_token() == "tok-1"
            assert gw.count("POST", "/v2/auth/token") == 1

            clock.now += 600  # past 3600 - margin
            tokens.get_token()
            assert gw.count("POST", "/v2/auth/token") == 2

    def test_sends_basic_credentials(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            TokenProvider(_cfg()).get_token()
        headers = gw.calls[0][2]["headers"]
        assert headers["Authorization"] == "Basic Y2lkOnNlY3JldA=="
        assert gw.calls[0][2]["timeout"] == 25

    def test_fallback_lifetime_when_gateway_omits_it(self):
        clock = FakeClock()
        gw = Gateway({("POST", "/v2/auth/token"): _response(200, {"access_token": "tok"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            tokens = TokenProvider(_cfg(token_ttl_seconds=50 * 60), clock=clock)
            tokens.get_token()
            clock.now += 50 * 60 - 1
            tokens.get_token()
            assert gw.count("POST", "/v2/auth/token") == 1
            clock.now += 2
            tokens.get_token()
            assert gw.count("POST", "/v2/auth/token") == 2

    def test_epoch_style_expires_in(self):
        clock = FakeClock()
        wall = 1_800_000_000.0
        gw = Gateway({("POST", "/v2/auth/token"): _response(200, {"access_token": "tok", "expires_in": wall + 600})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            tokens = TokenProvider(_cfg(), clock=clock, wall_clock=lambda: wall)
            tokens.get_token()
            clock.now += 500
            tokens.get_token()
            assert gw.count("POST", "/v2/auth/token") == 1
            clock.now += 100
            tokens.get_token()
            assert gw.count("POST", "/v2/auth/token") == 2

    def test_missing_credentials(self):
        with patch("app.services.qpay_client.requests.request") as req:
            with pytest.raises(QPayCredentialsMissing):
                TokenProvider(_cfg(client_secret="")).get_token()
            req.assert_not_called()

    def test_auth_failure(self):
        gw = Gateway({("POST", "/v2/auth/token"): _response(401, {"error": "invalid_client"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayAuthError) as exc:
                TokenProvider(_cfg()).get_token()
        assert exc.value.status_code == 401

    def test_auth_response_without_token(self):
        gw = Gateway({("POST", "/v2/auth/token"): _response(200, {"expires_in": 3600})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayAuthError):
                TokenProvider(_cfg()).get_token()

    def test_unusable_expires_in_is_an_auth_error(self):
        gw = Gateway({("POST", "/v2/auth/token"): _response(200, {"access_token": "t", "expires_in": "3600s"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            tokens = TokenProvider(_cfg())
            with pytest.raises(QPayAuthError):
                tokens.get_token()
            with pytest.raises(QPayAuthError):
                tokens.get_token()
        # Nothing was cached from the bad answer
        assert gw.count("POST", "/v2/auth/token") == 2

    def test_concurrent_refresh_is_single_flight(self):
        def slow_auth(kwargs):
            time.sleep(0.05)
            return AUTH_OK

        gw = Gateway({("POST", "/v2/auth/token"): slow_auth})
        tokens = TokenProvider(_cfg())
        results = []
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            threads = [threading.Thread(target=lambda: results.append(tokens.get_token())) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        assert results == ["tok-1"] * 8
        assert gw.count("POST", "/v2/auth/token") == 1


class TestCreateInvoice:
    def test_payload_and_result(self):
        invoice = {"invoice_id": "inv-9", "qr_text": "qr", "qr_image": "img", "urls": [{"name": "Khan", "link": "khan://"}]}
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/invoice"): _response(200, invoice)})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            result = QPayClient(_cfg()).create_invoice(
                sender_invoice_no="ONLINE-1-1", amount=30000, description="deposit", callback_url="https://cb"
            )
        _, _, kwargs = gw.calls[1]
        assert kwargs["json"] == {
            "invoice_code": "CLINIC_INVOICE",
            "sender_invoice_no": "ONLINE-1-1",
            "invoice_receiver_code": "terminal",
            "invoice_description": "deposit",
            "amount": 30000,
            "callback_url": "https://cb",
        }
        assert kwargs["headers"]["Authorization"] == "Bearer tok-1"
        assert result.invoice_id == "inv-9"
        assert result.urls == [{"name": "Khan", "link": "khan://"}]
        assert result.raw == invoice

    def test_default_callback_url(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/invoice"): _response(200, {"invoice_id": "x"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            QPayClient(_cfg(default_callback_url="https://default/cb")).create_invoice(
                sender_invoice_no="INV-1", amount=5, description="d"
            )
        assert gw.calls[1][2]["json"]["callback_url"] == "https://default/cb"

    def test_gateway_rejection_carries_status_and_body(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/invoice"): _response(422, {"message": "INVOICE_CODE_INVALID"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayInvoiceError) as exc:
                QPayClient(_cfg()).create_invoice(sender_invoice_no="a", amount=1, description="d")
        assert exc.value.status_code == 422
        assert exc.value.body == {"message": "INVOICE_CODE_INVALID"}

    def test_timeout_is_an_invoice_error(self):
        def timeout(kwargs):
            raise requests.Timeout("read timed out")

        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/invoice"): timeout})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayInvoiceError):
                QPayClient(_cfg()).create_invoice(sender_invoice_no="a", amount=1, description="d")

    def test_non_object_answer_is_an_invoice_error(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/invoice"): _response(200, ["inv-9"])})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayInvoiceError):
                QPayClient(_cfg()).create_invoice(sender_invoice_no="a", amount=1, description="d")

    def test_missing_invoice_code(self):
        with patch("app.services.qpay_client.requests.request") as req:
            with pytest.raises(QPayInvoiceError):
                QPayClient(_cfg(invoice_code="")).create_invoice(sender_invoice_no="a", amount=1, description="d")
            req.assert_not_called()


class TestCheckInvoicePaid:
    def test_only_paid_rows_count(self):
        rows = [
            {"payment_id": "p1", "payment_status": "PAID", "payment_amount": "10000.00", "payment_wallet": "KHAN", "payment_date": "2026-11-01T08:01:00"},
            {"payment_id": "p2", "payment_status": "FAILED", "payment_amount": "30000", "payment_date": "2026-11-01T08:02:00"},
            {"payment_id": "p3", "payment_status": "PAID", "payment_amount": 20000, "payment_wallet": "GOLOMT", "payment_date": "2026-11-01T08:05:00"},
        ]
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): _response(200, {"count": 3, "rows": rows})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            check = QPayClient(_cfg()).check_invoice_paid("inv-1")

        assert gw.calls[1][2]["json"]["object_id"] == "inv-1"
        assert gw.calls[1][2]["json"]["object_type"] == "INVOICE"
        assert check.paid is True
        assert check.paid_amount == Decimal("30000")
        assert check.payment_id == "p3"
        assert check.transaction_type == "GOLOMT"
        assert check.paid_at.isoformat() == "2026-11-01T08:05:00+00:00"
        assert [p.payment_id for p in check.payments] == ["p1", "p2", "p3"]

    def test_no_rows_means_unpaid(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): _response(200, {"count": 0, "rows": []})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            check = QPayClient(_cfg()).check_invoice_paid("inv-1")
        assert check.paid is False
        assert check.paid_amount == 0
        assert check.payment_id is None
        assert check.paid_at is None

    def test_follows_pages(self):
        first = [{"payment_id": f"f{i}", "payment_status": "FAILED", "payment_amount": 1} for i in range(PAGE_LIMIT)]
        second = [{"payment_id": "ok", "payment_status": "PAID", "payment_amount": 30000}]

        def check(kwargs):
            page = kwargs["json"]["offset"]["page_number"]
            return _response(200, {"count": PAGE_LIMIT + 1, "rows": first if page == 1 else second})

        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): check})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            result = QPayClient(_cfg()).check_invoice_paid("inv-1")
        assert gw.count("POST", "/v2/payment/check") == 2
        assert result.paid is True
        assert result.payment_id == "ok"

    def test_gateway_error(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): _response(500, {"message": "boom"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayCheckError):
                QPayClient(_cfg()).check_invoice_paid("inv-1")

    @pytest.mark.parametrize("answer", [
        {"count": 1, "rows": ["PAID"]},
        {"count": "many", "rows": [{"payment_id": f"p{i}", "payment_status": "FAILED"} for i in range(PAGE_LIMIT)]},
        "not an object",
    ])
    def test_malformed_answer_is_a_check_error(self, answer):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): _response(200, answer)})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            with pytest.raises(QPayCheckError):
                QPayClient(_cfg()).check_invoice_paid("inv-1")

    def test_rejected_token_is_refreshed_once(self):
        answers = iter([_response(401, {"message": "NO_AUTH"}), _response(200, {"count": 0, "rows": []})])
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("POST", "/v2/payment/check"): lambda kwargs: next(answers)})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            result = QPayClient(_cfg()).check_invoice_paid("inv-1")
        assert result.paid is False
        assert gw.count("POST", "/v2/auth/token") == 2


class TestCancelInvoice:
    def test_success(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("DELETE", "/v2/invoice/inv-1"): _response(200, {"message": "ok"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            outcome = QPayClient(_cfg()).cancel_invoice("inv-1")
        assert outcome.ok

    def test_failure_is_reported_not_raised(self):
        gw = Gateway({("POST", "/v2/auth/token"): AUTH_OK, ("DELETE", "/v2/invoice/inv-1"): _response(404, {"message": "INVOICE_NOTFOUND"})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            outcome = QPayClient(_cfg()).cancel_invoice("inv-1")
        assert not outcome.ok
        assert "INVOICE_NOTFOUND" in outcome.error

    def test_auth_failure_is_reported_not_raised(self):
        gw = Gateway({("POST", "/v2/auth/token"): _response(500, {})})
        with patch("app.services.qpay_client.requests.request", side_effect=gw):
            outcome = QPayClient(_cfg()).cancel_invoice("inv-1")
        assert not outcome.ok
