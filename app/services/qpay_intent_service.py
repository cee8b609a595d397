"""Gateway invoices for non-booking objects (clinic bills).

These are correlated by the gateway's own invoice id. As with deposits, a
callback is only a hint: payment is recorded after ``check_invoice_paid``.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.qpay_intent import QPayIntent
from app.services.audit_service import log_audit
from app.services.errors import NotFoundError, GatewayError, ValidationError
from app.services.qpay_client import QPayClient, QPayError, PaymentCheck

logger = logging.getLogger(__name__)

INTENT_NEW = "NEW"
INTENT_PAID = "PAID"


def create_invoice_intent(db: Session, client: QPayClient, object_id: int, amount: int, description: str | None = None) -> tuple[QPayIntent, dict]:
    if not object_id or object_id <= 0:
        raise ValidationError("Valid invoiceId is required")
    if not amount or amount <= 0:
        raise ValidationError("Valid amount > 0 is required")

    sender_invoice_no = f"INV-{object_id}-{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    try:
        invoice = client.create_invoice(
            sender_invoice_no=sender_invoice_no,
            amount=amount,
            description=description or f"Clinic invoice #{object_id}",
        )
    except QPayError as e:
        logger.warning("Invoice creation failed for clinic invoice %s: %s", object_id, e)
        raise GatewayError("Failed to create payment invoice", cause=e)

    intent = QPayIntent(
        environment=settings.QPAY_ENV,
        object_type="INVOICE",
        object_id=object_id,
        qpay_invoice_id=invoice.invoice_id,
        sender_invoice_no=sender_invoice_no,
        amount=amount,
        status=INTENT_NEW,
        raw=invoice.raw,
    )
    db.add(intent)
    log_audit(db, actor="staff", action="qpay_intent.created", entity_type="qpay_intent", entity_id=invoice.invoice_id,
              details={"objectId": object_id, "amount": amount})
    db.commit()
    db.refresh(intent)
    presentation = {"qrText": invoice.qr_text, "qrImage": invoice.qr_image, "urls": invoice.urls}
    return intent, presentation


def _load_intent(db: Session, qpay_invoice_id: str) -> QPayIntent:
    intent = db.execute(select(QPayIntent).where(QPayIntent.qpay_invoice_id == qpay_invoice_id)).scalar_one_or_none()
    if not intent:
        raise NotFoundError("QPay intent not found")
    return intent


def _record_paid(db: Session, intent: QPayIntent, check: PaymentCheck, actor: str) -> bool:
    res = db.execute(
        update(QPayIntent)
        .where(QPayIntent.id == intent.id, QPayIntent.status == INTENT_NEW)
        .values(
            status=INTENT_PAID,
            paid_amount=int(check.paid_amount),
            qpay_payment_id=check.payment_id,
            raw=check.raw,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        return False
    log_audit(db, actor=actor, action="qpay_intent.paid", entity_type="qpay_intent", entity_id=intent.qpay_invoice_id,
              details={"paidAmount": int(check.paid_amount), "paymentId": check.payment_id})
    db.commit()
    return True


def check_intent(db: Session, client: QPayClient, qpay_invoice_id: str, actor: str = "staff") -> tuple[QPayIntent, PaymentCheck | None]:
    """Verify an intent against the gateway. A PAID intent is answered locally."""
    intent = _load_intent(db, qpay_invoice_id)
    if intent.status == INTENT_PAID:
        return intent, None
    try:
        check = client.check_invoice_paid(qpay_invoice_id)
    except QPayError as e:
        raise GatewayError("Payment status check failed", cause=e)
    if check.paid and check.paid_amount >= intent.amount:
        _record_paid(db, intent, check, actor)
        db.refresh(intent)
    return intent, check


def confirm_intent_from_callback(db: Session, client: QPayClient, qpay_invoice_id: str | None) -> QPayIntent | None:
    if not qpay_invoice_id:
        return None
    intent, _ = check_intent(db, client, str(qpay_invoice_id), actor="qpay")
    return intent
