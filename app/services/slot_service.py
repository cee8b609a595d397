import enum
import re
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus, ACTIVE_BOOKING_STATUSES
from app.models.doctor_schedule import DoctorSchedule
from app.models.user import User

TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class SlotRejection(str, enum.Enum):
    NO_SCHEDULE = "NO_SCHEDULE"
    OUTSIDE_WORKING_HOURS = "OUTSIDE_WORKING_HOURS"
    SLOT_TAKEN = "SLOT_TAKEN"


@dataclass
class SlotCheck:
    available: bool
    reason: SlotRejection | None = None
    schedule_start: str | None = None
    schedule_end: str | None = None
    conflicting_booking_id: int | None = None


def is_valid_time(value) -> bool:
    return isinstance(value, str) and bool(TIME_RE.match(value))


def to_minutes(hhmm: str) -> int:
    hh, mm = map(int, hhmm.split(":"))
    return hh * 60 + mm


def from_minutes(total: int) -> str:
    hh, mm = divmod(total, 60)
    return f"{hh:02d}:{mm:02d}"


def overlaps(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Half-open intervals: touching ends do not overlap."""
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(end_a) > to_minutes(start_b)


def check_slot(db: Session, doctor_id: int, branch_id: int, day: date, start_time: str, end_time: str, online: bool = True) -> SlotCheck:
    """Read-only availability check for a doctor's window on one day.

    Staff bookings only need a non-overlapping window. Online holds also require
    that nothing (except expired online holds) starts at the same instant.
    """
    schedule = db.execute(
        select(DoctorSchedule).where(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.branch_id == branch_id,
            DoctorSchedule.date == day,
        )
    ).scalars().first()
    if not schedule:
        return SlotCheck(available=False, reason=SlotRejection.NO_SCHEDULE)

    if to_minutes(start_time) < to_minutes(schedule.start_time) or to_minutes(end_time) > to_minutes(schedule.end_time):
        return SlotCheck(
            available=False,
            reason=SlotRejection.OUTSIDE_WORKING_HOURS,
            schedule_start=schedule.start_time,
            schedule_end=schedule.end_time,
        )

    same_day = db.execute(
        select(Booking).where(Booking.doctor_id == doctor_id, Booking.date == day)
    ).scalars().all()

    for b in same_day:
        if b.status in ACTIVE_BOOKING_STATUSES and overlaps(b.start_time, b.end_time, start_time, end_time):
            return SlotCheck(available=False, reason=SlotRejection.SLOT_TAKEN, conflicting_booking_id=b.id)
        if online and b.status != BookingStatus.ONLINE_EXPIRED and b.start_time == start_time:
            return SlotCheck(available=False, reason=SlotRejection.SLOT_TAKEN, conflicting_booking_id=b.id)

    return SlotCheck(available=True, schedule_start=schedule.start_time, schedule_end=schedule.end_time)


def generate_time_slots(start_time: str, end_time: str, step_minutes: int) -> list[str]:
    """HH:MM starts from start_time (inclusive) to end_time (exclusive)."""
    if step_minutes <= 0:
        raise ValueError("step_minutes must be > 0")
    current, end = to_minutes(start_time), to_minutes(end_time)
    slots = []
    while current < end:
        slots.append(from_minutes(current))
        current += step_minutes
    return slots


def booking_grid(db: Session, branch_id: int, day: date, duration_minutes: int = 30) -> dict:
    """Public grid: scheduled doctors, candidate start times and busy doctor/start pairs.

    No patient data leaves this function.
    """
    rows = db.execute(
        select(DoctorSchedule, User)
        .join(User, User.id == DoctorSchedule.doctor_id)
        .where(DoctorSchedule.branch_id == branch_id, DoctorSchedule.date == day)
        .order_by(DoctorSchedule.doctor_id)
    ).all()
    if not rows:
        return {"doctors": [], "slots": [], "busy": [], "durationMinutes": duration_minutes}

    doctors = {}
    for schedule, doctor in rows:
        doctors[doctor.id] = {
            "id": doctor.id,
            "name": doctor.name or f"Doctor #{doctor.id}",
            "scheduleStart": schedule.start_time,
            "scheduleEnd": schedule.end_time,
        }

    slot_set = set()
    for d in doctors.values():
        slot_set.update(generate_time_slots(d["scheduleStart"], d["scheduleEnd"], duration_minutes))

    taken = db.execute(
        select(Booking.doctor_id, Booking.start_time).where(
            Booking.branch_id == branch_id,
            Booking.date == day,
            Booking.doctor_id.in_(list(doctors)),
            Booking.status != BookingStatus.ONLINE_EXPIRED,
        )
    ).all()

    return {
        "doctors": list(doctors.values()),
        "slots": sorted(slot_set),
        "busy": sorted({f"{doctor_id}:{start}" for doctor_id, start in taken}),
        "durationMinutes": duration_minutes,
    }
