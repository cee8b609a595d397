import enum
from datetime import date, datetime, timezone
from sqlalchemy import String, Integer, Date, DateTime, Text, Enum, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ONLINE_HELD = "ONLINE_HELD"
    ONLINE_CONFIRMED = "ONLINE_CONFIRMED"
    ONLINE_EXPIRED = "ONLINE_EXPIRED"


# Statuses that occupy a doctor's time for overlap checks
ACTIVE_BOOKING_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.CONFIRMED,
    BookingStatus.IN_PROGRESS,
    BookingStatus.ONLINE_HELD,
    BookingStatus.ONLINE_CONFIRMED,
)

_ONLINE_SLOT_PREDICATE = "status IN ('ONLINE_HELD', 'ONLINE_CONFIRMED')"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # Two online holds can never own the same doctor/date/start
        Index(
            "uq_bookings_online_slot", "doctor_id", "date", "start_time",
            unique=True,
            postgresql_where=text(_ONLINE_SLOT_PREDICATE),
            sqlite_where=text(_ONLINE_SLOT_PREDICATE),
        ),
        Index("ix_bookings_doctor_date", "doctor_id", "date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(Integer)
    branch_id: Mapped[int] = mapped_column(Integer, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, index=True)

    date: Mapped[date] = mapped_column(Date)
    start_time: Mapped[str] = mapped_column(String(5))  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5))    # HH:MM

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, native_enum=False, length=30, validate_strings=True),
        default=BookingStatus.PENDING,
        index=True,
    )
    note: Mapped[str] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
