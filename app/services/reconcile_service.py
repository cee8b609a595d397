"""Deposit confirmation and lazy expiry for online holds.

``reconcile`` is the only place a deposit leaves NEW through the poll path;
``confirm_from_callback`` is its webhook counterpart and only ever confirms.
Both write the deposit and its booking in one commit, guarded by a
conditional UPDATE on ``status = NEW`` so a concurrent winner is never
overwritten.
"""
import enum
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus
from app.models.booking_deposit import BookingDeposit, DepositStatus, can_transition
from app.services.audit_service import log_audit
from app.services.errors import NotFoundError, GatewayError, TokenMismatchError
from app.services.qpay_client import QPayClient, QPayError, PaymentCheck

logger = logging.getLogger(__name__)


class PaymentState(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


_DEPOSIT_TO_STATE = {
    DepositStatus.NEW: PaymentState.PENDING,
    DepositStatus.PAID: PaymentState.PAID,
    DepositStatus.EXPIRED: PaymentState.EXPIRED,
    DepositStatus.CANCELLED: PaymentState.CANCELLED,
}

_BOOKING_TARGET = {
    DepositStatus.PAID: BookingStatus.ONLINE_CONFIRMED,
    DepositStatus.EXPIRED: BookingStatus.ONLINE_EXPIRED,
    DepositStatus.CANCELLED: BookingStatus.ONLINE_EXPIRED,
}


@dataclass
class ReconcileResult:
    status: PaymentState
    booking_status: BookingStatus | None
    expires_at: datetime | None = None
    transitioned: bool = False


def as_utc(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def load_deposit(db: Session, booking_id: int) -> BookingDeposit:
    d = db.execute(select(BookingDeposit).where(BookingDeposit.booking_id == booking_id)).scalar_one_or_none()
    if not d:
        raise NotFoundError("Deposit not found")
    return d


def _result(db: Session, deposit: BookingDeposit, transitioned: bool = False) -> ReconcileResult:
    booking = db.get(Booking, deposit.booking_id)
    state = _DEPOSIT_TO_STATE[deposit.status]
    return ReconcileResult(
        status=state,
        booking_status=booking.status if booking else None,
        expires_at=as_utc(deposit.hold_expires_at) if state is PaymentState.PENDING else None,
        transitioned=transitioned,
    )


def _apply_transition(db: Session, deposit: BookingDeposit, target: DepositStatus, actor: str, values: dict | None = None) -> bool:
    """Move NEW -> target together with the booking. False if someone else got there first."""
    if not can_transition(deposit.status, target):
        return False
    deposit_id, booking_id = deposit.id, deposit.booking_id
    res = db.execute(
        update(BookingDeposit)
        .where(BookingDeposit.id == deposit_id, BookingDeposit.status == DepositStatus.NEW)
        .values(status=target, updated_at=datetime.now(timezone.utc), **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        logger.info("Deposit %s already left NEW; skipping %s", deposit_id, target.value)
        return False
    db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.ONLINE_HELD)
        .values(status=_BOOKING_TARGET[target])
        .execution_options(synchronize_session=False)
    )
    log_audit(db, actor=actor, action=f"online_hold.{target.value.lower()}", entity_type="booking", entity_id=booking_id,
              details={k: v for k, v in (values or {}).items() if k != "raw"})
    db.commit()
    db.expire_all()
    logger.info("Booking %s deposit %s -> %s", booking_id, deposit_id, target.value)
    return True


def _covers_deposit(deposit: BookingDeposit, check: PaymentCheck) -> bool:
    if not check.paid:
        return False
    if check.paid_amount < deposit.amount:
        logger.warning("Booking %s underpaid: %s of %s", deposit.booking_id, check.paid_amount, deposit.amount)
        return False
    return True


def _mark_paid(db: Session, deposit: BookingDeposit, check: PaymentCheck, actor: str) -> ReconcileResult:
    moved = _apply_transition(db, deposit, DepositStatus.PAID, actor, {
        "paid_amount": int(check.paid_amount),
        "qpay_payment_id": check.payment_id,
        "paid_at": check.paid_at or datetime.now(timezone.utc),
        "raw": check.raw,
    })
    db.refresh(deposit)
    return _result(db, deposit, transitioned=moved)


def reconcile(db: Session, client: QPayClient, booking_id: int, now: datetime | None = None, actor: str = "poll") -> ReconcileResult:
    """Decide PAID / EXPIRED / PENDING for a held booking and apply at most one transition.

    Terminal deposits are answered from the database without calling the
    gateway. A failed gateway check raises ``GatewayError`` and changes nothing.
    """
    deposit = load_deposit(db, booking_id)
    if deposit.status.is_terminal:
        return _result(db, deposit)

    try:
        check = client.check_invoice_paid(deposit.qpay_invoice_id)
    except QPayError as e:
        logger.warning("Payment check failed for booking %s: %s", booking_id, e)
        raise GatewayError("Payment status check failed", cause=e)

    if _covers_deposit(deposit, check):
        return _mark_paid(db, deposit, check, actor=actor)

    now = now or datetime.now(timezone.utc)
    if now <= as_utc(deposit.hold_expires_at):
        return _result(db, deposit)

    cancelled = client.cancel_invoice(deposit.qpay_invoice_id)
    if not cancelled.ok:
        # Local expiry stands even if the gateway still lists the invoice
        logger.warning("Expiring booking %s without gateway cancel: %s", booking_id, cancelled.error)
    moved = _apply_transition(db, deposit, DepositStatus.EXPIRED, actor=actor, values={"raw": check.raw})
    db.refresh(deposit)
    return _result(db, deposit, transitioned=moved)


def confirm_from_callback(db: Session, client: QPayClient, booking_id: int | None, token: str | None) -> ReconcileResult:
    """Webhook variant: token gate, then confirm payment only (never expires)."""
    if not booking_id or not token:
        raise TokenMismatchError("Missing bookingId or token")
    deposit = load_deposit(db, booking_id)
    if not secrets.compare_digest(str(token).encode("utf-8"), (deposit.callback_token or "").encode("utf-8")):
        raise TokenMismatchError("Callback token mismatch")
    if deposit.status.is_terminal:
        return _result(db, deposit)

    try:
        check = client.check_invoice_paid(deposit.qpay_invoice_id)
    except QPayError as e:
        raise GatewayError("Payment status check failed", cause=e)

    if _covers_deposit(deposit, check):
        return _mark_paid(db, deposit, check, actor="qpay")
    return _result(db, deposit)
