"""QPay merchant API client.

Token caching lives in :class:`TokenProvider`; :class:`QPayClient` issues
invoices, checks payments and cancels invoices on top of it. Every call is
bounded by ``QPayConfig.timeout``; network failures surface as the same error
class as a non-2xx answer for that operation.
"""
import base64
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import requests

logger = logging.getLogger(__name__)

PAGE_LIMIT = 100
MAX_CHECK_PAGES = 10
# Subtracted from a lifetime the gateway states explicitly
TOKEN_EXPIRY_MARGIN_SECONDS = 30


@dataclass
class QPayConfig:
    base_url: str           # https://merchant-sandbox.qpay.mn OR https://merchant.qpay.mn
    client_id: str
    client_secret: str
    invoice_code: str       # merchant invoice template code
    receiver_code: str = "terminal"
    default_callback_url: str = ""
    timeout: int = 25
    token_ttl_seconds: int = 50 * 60


class QPayError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class QPayCredentialsMissing(QPayError):
    pass

class QPayAuthError(QPayError):
    pass

class QPayInvoiceError(QPayError):
    pass

class QPayCheckError(QPayError):
    pass

class QPayCancelError(QPayError):
    pass


@dataclass(frozen=True)
class Outcome:
    """Result of a best-effort operation whose failure must not propagate."""
    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "Outcome":
        return cls(ok=False, error=error)


@dataclass
class InvoiceResult:
    invoice_id: str
    qr_text: str
    qr_image: str
    urls: list = field(default_factory=list)
    raw: dict = field(default_factory=dict)


@dataclass
class PaymentRow:
    payment_id: str
    payment_status: str
    payment_amount: Decimal
    transaction_type: str | None
    payment_date: str | None


@dataclass
class PaymentCheck:
    paid: bool
    paid_amount: Decimal
    payment_id: str | None
    transaction_type: str | None
    paid_at: datetime | None
    payments: list[PaymentRow] = field(default_factory=list)
    raw: dict = field(default_factory=dict)


def _decode(r: requests.Response):
    try:
        return r.json() if r.text else {}
    except ValueError:
        return {"raw": r.text}


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value if value not in (None, "") else 0))
    except InvalidOperation:
        return Decimal(0)


def _parse_gateway_datetime(value) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class TokenProvider:
    """Owns the gateway access token and its expiry.

    Refresh is single-flight: concurrent callers that find the token missing or
    expired wait on one lock and only the first performs the auth call.
    """

    def __init__(self, cfg: QPayConfig, clock=time.monotonic, wall_clock=time.time):
        self.cfg = cfg
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at: float = 0.0

    def _cached(self) -> str | None:
        if self._token and self._expires_at > self._clock():
            return self._token
        return None

    def get_token(self) -> str:
        token = self._cached()
        if token:
            return token
        with self._lock:
            token = self._cached()
            if token:
                return token
            return self._refresh()

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _lifetime(self, expires_in) -> float:
        if not expires_in:
            return float(self.cfg.token_ttl_seconds)
        value = float(expires_in)
        # QPay sometimes reports an absolute epoch instead of a duration
        if value > 1_000_000_000:
            value = value - self._wall_clock()
        return max(value - TOKEN_EXPIRY_MARGIN_SECONDS, 0.0)

    def _refresh(self) -> str:
        if not (self.cfg.client_id and self.cfg.client_secret):
            raise QPayCredentialsMissing("Missing QPay credentials: QPAY_CLIENT_ID and QPAY_CLIENT_SECRET are required")

        basic = base64.b64encode(f"{self.cfg.client_id}:{self.cfg.client_secret}".encode("utf-8")).decode("ascii")
        url = f"{self.cfg.base_url}/v2/auth/token"
        try:
            r = requests.request(
                method="POST",
                url=url,
                headers={"Content-Type": "application/json", "Authorization": f"Basic {basic}"},
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as e:
            raise QPayAuthError(f"QPay auth request failed: {e}") from e

        data = _decode(r)
        if r.status_code >= 400:
            raise QPayAuthError(f"QPay auth failed ({r.status_code}): {data}", status_code=r.status_code, body=data)
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise QPayAuthError("QPay auth response missing access_token", status_code=r.status_code, body=data)

        try:
            lifetime = self._lifetime(data.get("expires_in"))
        except (TypeError, ValueError) as e:
            raise QPayAuthError(f"QPay auth response has unusable expires_in: {data.get('expires_in')!r}", status_code=r.status_code, body=data) from e
        self._token = token
        self._expires_at = self._clock() + lifetime
        logger.info("QPay access token refreshed (valid %.0fs)", lifetime)
        return token


class QPayClient:
    def __init__(self, cfg: QPayConfig, tokens: TokenProvider | None = None):
        self.cfg = cfg
        self.tokens = tokens or TokenProvider(cfg)

    def request(self, method: str, path: str, payload: dict | None, error_cls: type[QPayError]):
        """Authorized call; a 401 drops the cached token and retries once."""
        for attempt in (1, 2):
            token = self.tokens.get_token()
            url = f"{self.cfg.base_url}{path}"
            try:
                r = requests.request(
                    method=method.upper(),
                    url=url,
                    json=payload,
                    headers={"Content-Type": "application/json", "Authorization": f"Bearer {token}"},
                    timeout=self.cfg.timeout,
                )
            except requests.RequestException as e:
                raise error_cls(f"QPay {method.upper()} {path} failed: {e}") from e

            data = _decode(r)
            if r.status_code == 401 and attempt == 1:
                logger.warning("QPay rejected cached token on %s %s; re-authenticating", method.upper(), path)
                self.tokens.invalidate()
                continue
            if r.status_code >= 400:
                raise error_cls(f"QPay {method.upper()} {path} failed ({r.status_code}): {data}", status_code=r.status_code, body=data)
            if not isinstance(data, dict):
                raise error_cls(f"QPay {method.upper()} {path} returned a non-object body", status_code=r.status_code, body=data)
            return data
        raise error_cls(f"QPay {method.upper()} {path} unauthorized")

    def create_invoice(self, *, sender_invoice_no: str, amount: int, description: str, callback_url: str | None = None, receiver_code: str | None = None) -> InvoiceResult:
        if not self.cfg.invoice_code:
            raise QPayInvoiceError("Missing QPAY_INVOICE_CODE")
        payload = {
            "invoice_code": self.cfg.invoice_code,
            "sender_invoice_no": sender_invoice_no,
            "invoice_receiver_code": receiver_code or self.cfg.receiver_code or "terminal",
            "invoice_description": description,
            "amount": amount,
            "callback_url": callback_url or self.cfg.default_callback_url,
        }
        data = self.request("POST", "/v2/invoice", payload, QPayInvoiceError)
        invoice_id = data.get("invoice_id")
        if not invoice_id:
            raise QPayInvoiceError("QPay invoice response missing invoice_id", body=data)
        logger.info("QPay invoice %s created for %s (amount=%s)", invoice_id, sender_invoice_no, amount)
        return InvoiceResult(
            invoice_id=str(invoice_id),
            qr_text=data.get("qr_text") or "",
            qr_image=data.get("qr_image") or "",
            urls=data.get("urls") or [],
            raw=data,
        )

    def check_invoice_paid(self, invoice_id: str) -> PaymentCheck:
        try:
            return self._check_invoice_paid(invoice_id)
        except (AttributeError, TypeError, ValueError) as e:
            # Malformed rows or counts are a failed check, never "unpaid"
            raise QPayCheckError(f"QPay payment check for {invoice_id} returned a malformed answer: {e}") from e

    def _check_invoice_paid(self, invoice_id: str) -> PaymentCheck:
        rows: list[dict] = []
        pages: list[dict] = []
        for page in range(1, MAX_CHECK_PAGES + 1):
            payload = {
                "object_type": "INVOICE",
                "object_id": invoice_id,
                "offset": {"page_number": page, "page_limit": PAGE_LIMIT},
            }
            data = self.request("POST", "/v2/payment/check", payload, QPayCheckError)
            pages.append(data)
            page_rows = data.get("rows") or []
            rows.extend(page_rows)
            count = data.get("count")
            if len(page_rows) < PAGE_LIMIT or (count is not None and len(rows) >= int(count)):
                break

        payments = [
            PaymentRow(
                payment_id=str(r.get("payment_id") or ""),
                payment_status=str(r.get("payment_status") or "").upper(),
                payment_amount=_to_decimal(r.get("payment_amount")),
                transaction_type=r.get("payment_wallet"),
                payment_date=r.get("payment_date"),
            )
            for r in rows
        ]
        paid_rows = [p for p in payments if p.payment_status == "PAID"]
        latest = None
        if paid_rows:
            oldest = datetime.min.replace(tzinfo=timezone.utc)
            latest = max(paid_rows, key=lambda p: _parse_gateway_datetime(p.payment_date) or oldest)

        return PaymentCheck(
            paid=bool(paid_rows),
            paid_amount=sum((p.payment_amount for p in paid_rows), Decimal(0)),
            payment_id=latest.payment_id if latest else None,
            transaction_type=latest.transaction_type if latest else None,
            paid_at=_parse_gateway_datetime(latest.payment_date) if latest else None,
            payments=payments,
            raw=pages[0] if len(pages) == 1 else {"pages": pages},
        )

    def cancel_invoice(self, invoice_id: str) -> Outcome:
        try:
            self.request("DELETE", f"/v2/invoice/{invoice_id}", None, QPayCancelError)
        except QPayError as e:
            logger.warning("QPay invoice %s cancel failed: %s", invoice_id, e)
            return Outcome.failure(str(e))
        logger.info("QPay invoice %s cancelled", invoice_id)
        return Outcome.success()
