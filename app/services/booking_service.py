import logging
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking, BookingStatus
from app.models.booking_deposit import BookingDeposit, DepositStatus
from app.models.branch import Branch
from app.models.patient import Patient
from app.models.user import User, ROLE_DOCTOR
from app.services.audit_service import log_audit
from app.services.errors import ValidationError, ScheduleViolation, ConflictError, GatewayError
from app.services.qpay_client import QPayClient, QPayError, Outcome
from app.services.slot_service import check_slot, is_valid_time, to_minutes, SlotRejection

logger = logging.getLogger(__name__)

PLACEHOLDER_OVOG = "Online"
PLACEHOLDER_NAME = "Booking"
CALLBACK_PATH = "/api/v1/gateway/booking/callback"


@dataclass
class CustomerFields:
    ovog: str = ""
    name: str = ""
    phone: str = ""
    reg_no: str = ""
    note: str = ""


@dataclass
class HoldResult:
    booking_id: int
    expires_at: datetime
    amount: int
    qpay_invoice_id: str
    sender_invoice_no: str
    qr_text: str
    qr_image: str
    urls: list = field(default_factory=list)


def parse_day(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError("Invalid date (use YYYY-MM-DD)")


def make_callback_token() -> str:
    return secrets.token_urlsafe(32)


def make_sender_invoice_no(booking_id: int, now: datetime) -> str:
    # Booking id + epoch millis is unique without a shared sequence
    return f"ONLINE-{booking_id}-{int(now.timestamp() * 1000)}"


def build_callback_url(booking_id: int, token: str) -> str:
    base = (settings.API_PUBLIC_URL or "").rstrip("/")
    return f"{base}{CALLBACK_PATH}?{urlencode({'bookingId': booking_id, 'token': token})}"


def encode_customer_note(customer: CustomerFields) -> str:
    lines = [
        "Online booking",
        f"Ovog: {customer.ovog.strip()}",
        f"Name: {customer.name.strip()}",
        f"Phone: {customer.phone.strip()}",
        f"RegNo: {customer.reg_no.strip()}",
    ]
    if customer.note.strip():
        lines.append(f"Note: {customer.note.strip()}")
    return "\n".join(lines)


def _find_placeholder(db: Session, branch_id: int) -> Patient | None:
    return db.execute(
        select(Patient).where(
            Patient.branch_id == branch_id,
            Patient.reg_no == settings.ONLINE_PLACEHOLDER_REG_NO,
        ).order_by(Patient.id)
    ).scalars().first()


def get_or_create_placeholder_patient(db: Session, branch_id: int) -> Patient:
    """One shared stand-in patient per branch for customers not yet identified.

    Committed on its own; ``uq_patients_branch_reg_no`` makes a concurrent
    first hold lose the insert, and the loser re-reads the winner's row.
    """
    p = _find_placeholder(db, branch_id)
    if p:
        return p
    db.add(Patient(
        branch_id=branch_id,
        ovog=PLACEHOLDER_OVOG,
        name=PLACEHOLDER_NAME,
        reg_no=settings.ONLINE_PLACEHOLDER_REG_NO,
    ))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Placeholder patient for branch %s created concurrently; reusing it", branch_id)
    return _find_placeholder(db, branch_id)


def _validate(db: Session, doctor_id: int, branch_id: int, day, start_time: str, end_time: str) -> date:
    if not is_valid_time(start_time) or not is_valid_time(end_time):
        raise ValidationError("startTime and endTime must be HH:MM (24h)")
    if to_minutes(start_time) >= to_minutes(end_time):
        raise ValidationError("startTime must be before endTime")
    d = parse_day(day)

    doctor = db.get(User, doctor_id)
    if not doctor or doctor.role != ROLE_DOCTOR:
        raise ValidationError("Invalid doctor")
    if not db.get(Branch, branch_id):
        raise ValidationError("Branch not found")
    return d


def rollback_hold(db: Session, booking_id: int) -> Outcome:
    """Compensate a hold whose invoice could not be issued. Never raises."""
    try:
        db.rollback()
        b = db.get(Booking, booking_id)
        if b is not None:
            db.delete(b)
        log_audit(db, actor="public", action="online_hold.rolled_back", entity_type="booking", entity_id=booking_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to delete booking %s after invoice failure", booking_id, exc_info=True)
        return Outcome.failure(str(e))
    return Outcome.success()


def create_hold(
    db: Session,
    client: QPayClient,
    *,
    doctor_id: int,
    branch_id: int,
    day,
    start_time: str,
    end_time: str,
    customer: CustomerFields,
    now: datetime | None = None,
) -> HoldResult:
    d = _validate(db, doctor_id, branch_id, day, start_time, end_time)

    check = check_slot(db, doctor_id, branch_id, d, start_time, end_time, online=True)
    if not check.available:
        if check.reason is SlotRejection.SLOT_TAKEN:
            raise ConflictError("Slot is already taken", code=SlotRejection.SLOT_TAKEN.value)
        raise ScheduleViolation(
            "Doctor has no schedule for this date/branch" if check.reason is SlotRejection.NO_SCHEDULE
            else "Booking outside doctor's working hours",
            reason=check.reason.value,
            scheduleStart=check.schedule_start,
            scheduleEnd=check.schedule_end,
        )

    patient = get_or_create_placeholder_patient(db, branch_id)
    booking = Booking(
        doctor_id=doctor_id,
        branch_id=branch_id,
        patient_id=patient.id,
        date=d,
        start_time=start_time,
        end_time=end_time,
        status=BookingStatus.ONLINE_HELD,
        note=encode_customer_note(customer),
    )
    db.add(booking)
    try:
        db.commit()
    except IntegrityError:
        # Another online hold won the same doctor/date/start
        db.rollback()
        raise ConflictError("Slot is already taken", code=SlotRejection.SLOT_TAKEN.value)
    db.refresh(booking)

    now = now or datetime.now(timezone.utc)
    token = make_callback_token()
    sender_invoice_no = make_sender_invoice_no(booking.id, now)
    amount = settings.ONLINE_DEPOSIT_AMOUNT

    try:
        invoice = client.create_invoice(
            sender_invoice_no=sender_invoice_no,
            amount=amount,
            description=f"Online booking deposit #{booking.id} ({d.isoformat()} {start_time})",
            callback_url=build_callback_url(booking.id, token),
        )
    except QPayError as e:
        logger.warning("Invoice creation failed for booking %s: %s", booking.id, e)
        rollback_hold(db, booking.id)
        raise GatewayError("Failed to create payment invoice", cause=e)
    except Exception:
        # No deposit exists yet, so the held slot must not outlive this request
        logger.error("Unexpected error creating invoice for booking %s", booking.id, exc_info=True)
        rollback_hold(db, booking.id)
        raise

    expires_at = now + timedelta(minutes=settings.ONLINE_HOLD_MINUTES)
    db.add(BookingDeposit(
        booking_id=booking.id,
        branch_id=branch_id,
        amount=amount,
        status=DepositStatus.NEW,
        hold_expires_at=expires_at,
        qpay_invoice_id=invoice.invoice_id,
        sender_invoice_no=sender_invoice_no,
        callback_token=token,
        raw=invoice.raw,
    ))
    log_audit(db, actor="public", action="online_hold.created", entity_type="booking", entity_id=booking.id,
              details={"qpayInvoiceId": invoice.invoice_id, "senderInvoiceNo": sender_invoice_no, "expiresAt": expires_at.isoformat()})
    try:
        db.commit()
    except SQLAlchemyError:
        logger.error("Failed to persist deposit for booking %s", booking.id, exc_info=True)
        client.cancel_invoice(invoice.invoice_id)
        rollback_hold(db, booking.id)
        raise

    logger.info("Online hold %s created (doctor=%s %s %s, expires %s)", booking.id, doctor_id, d, start_time, expires_at.isoformat())
    return HoldResult(
        booking_id=booking.id,
        expires_at=expires_at,
        amount=amount,
        qpay_invoice_id=invoice.invoice_id,
        sender_invoice_no=sender_invoice_no,
        qr_text=invoice.qr_text,
        qr_image=invoice.qr_image,
        urls=invoice.urls,
    )
