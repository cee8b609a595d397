from functools import lru_cache

from app.core.config import settings
from app.services.qpay_client import QPayClient, QPayConfig


@lru_cache(maxsize=1)
def get_qpay_client() -> QPayClient:
    """Process-wide client so every request shares one token cache."""
    return QPayClient(QPayConfig(
        base_url=settings.qpay_base_url,
        client_id=settings.QPAY_CLIENT_ID,
        client_secret=settings.QPAY_CLIENT_SECRET,
        invoice_code=settings.QPAY_INVOICE_CODE,
        receiver_code=settings.QPAY_RECEIVER_CODE,
        default_callback_url=settings.QPAY_CALLBACK_URL,
        timeout=settings.QPAY_TIMEOUT,
        token_ttl_seconds=settings.QPAY_TOKEN_TTL_SECONDS,
    ))
