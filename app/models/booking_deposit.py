import enum
from datetime import datetime, timezone
from sqlalchemy import String, Integer, DateTime, Enum, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


class DepositStatus(str, enum.Enum):
    NEW = "NEW"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not DepositStatus.NEW


# The only transitions the reconciler may apply; terminal states have no way out
DEPOSIT_TRANSITIONS: dict[DepositStatus, frozenset[DepositStatus]] = {
    DepositStatus.NEW: frozenset({DepositStatus.PAID, DepositStatus.EXPIRED, DepositStatus.CANCELLED}),
    DepositStatus.PAID: frozenset(),
    DepositStatus.EXPIRED: frozenset(),
    DepositStatus.CANCELLED: frozenset(),
}


def can_transition(current: DepositStatus, target: DepositStatus) -> bool:
    return target in DEPOSIT_TRANSITIONS[current]


class BookingDeposit(Base):
    __tablename__ = "booking_deposits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[int] = mapped_column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, index=True)
    branch_id: Mapped[int] = mapped_column(Integer, index=True)

    amount: Mapped[int] = mapped_column(Integer)
    status: Mapped[DepositStatus] = mapped_column(
        Enum(DepositStatus, native_enum=False, length=20, validate_strings=True),
        default=DepositStatus.NEW,
        index=True,
    )
    hold_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    qpay_invoice_id: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    sender_invoice_no: Mapped[str] = mapped_column(String(64), unique=True)
    callback_token: Mapped[str] = mapped_column(String(128))

    # Filled once PAID
    paid_amount: Mapped[int] = mapped_column(Integer, nullable=True)
    qpay_payment_id: Mapped[str] = mapped_column(String(80), nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    raw: Mapped[dict] = mapped_column(JSON, nullable=True)  # last gateway payload, for audit

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
