import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from app.api.deps import get_qpay_client
from app.core.config import settings
from app.db.session import SessionLocal
from app.models.booking import Booking, BookingStatus
from app.models.booking_deposit import BookingDeposit, DepositStatus
from app.services.audit_service import log_audit
from app.services.errors import BookingError
from app.services.reconcile_service import reconcile, PaymentState

logger = logging.getLogger(__name__)


def expire_orphan_holds(db: Session, now: datetime) -> int:
    """Release ONLINE_HELD bookings that never got a deposit row (crash between the two inserts)."""
    cutoff = now - timedelta(minutes=settings.ORPHAN_HOLD_GRACE_MINUTES)
    orphan_ids = db.execute(
        select(Booking.id)
        .outerjoin(BookingDeposit, BookingDeposit.booking_id == Booking.id)
        .where(
            Booking.status == BookingStatus.ONLINE_HELD,
            BookingDeposit.id.is_(None),
            Booking.created_at < cutoff,
        )
    ).scalars().all()
    for booking_id in orphan_ids:
        db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.ONLINE_HELD)
            .values(status=BookingStatus.ONLINE_EXPIRED)
        )
        log_audit(db, actor="sweep", action="online_hold.orphan_expired", entity_type="booking", entity_id=booking_id)
    db.commit()
    return len(orphan_ids)


def sweep_expired_holds(db: Session, client, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    due = db.execute(
        select(BookingDeposit.booking_id).where(
            BookingDeposit.status == DepositStatus.NEW,
            BookingDeposit.hold_expires_at < now,
        )
    ).scalars().all()

    counts = {"checked": len(due), "expired": 0, "paid": 0, "pending": 0, "errors": 0}
    for booking_id in due:
        try:
            result = reconcile(db, client, booking_id, now=now, actor="sweep")
        except BookingError as e:
            # Gateway unreachable: leave it for the next run or the next poll
            logger.warning("Sweep could not reconcile booking %s: %s", booking_id, e)
            counts["errors"] += 1
            continue
        if result.status is PaymentState.EXPIRED:
            counts["expired"] += 1
        elif result.status is PaymentState.PAID:
            counts["paid"] += 1
        else:
            counts["pending"] += 1
    counts["orphans"] = expire_orphan_holds(db, now)
    return counts


def expire_stale_holds():
    db: Session = SessionLocal()
    try:
        try:
            counts = sweep_expired_holds(db, get_qpay_client())
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        logger.info("Hold sweep: %s", counts)
        return counts
    finally:
        db.close()
