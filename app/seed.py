import logging
from datetime import date, timedelta

from sqlalchemy.orm import Session
from sqlalchemy import select, text
from sqlalchemy.exc import ProgrammingError

from app.db.session import SessionLocal
from app.models.branch import Branch
from app.models.doctor_schedule import DoctorSchedule
from app.models.user import User, ROLE_DOCTOR
from app.services.booking_service import get_or_create_placeholder_patient

logger = logging.getLogger(__name__)

SCHEDULE_DAYS = 14


def ensure_branch(db: Session, name: str, address: str) -> Branch:
    b = db.execute(select(Branch).where(Branch.name == name)).scalars().first()
    if b:
        return b
    b = Branch(name=name, address=address)
    db.add(b)
    db.commit()
    return b


def ensure_user(db: Session, email: str, role: str, name: str, branch_id: int | None = None) -> User:
    u = db.execute(select(User).where(User.email == email)).scalars().first()
    if u:
        return u
    u = User(email=email, name=name, role=role, branch_id=branch_id)
    db.add(u)
    db.commit()
    return u


def ensure_schedules(db: Session, doctor: User, branch: Branch, start: date, days: int, start_time: str, end_time: str) -> int:
    created = 0
    for i in range(days):
        d = start + timedelta(days=i)
        if d.weekday() == 6:  # closed on Sundays
            continue
        exists = db.execute(
            select(DoctorSchedule).where(
                DoctorSchedule.doctor_id == doctor.id,
                DoctorSchedule.branch_id == branch.id,
                DoctorSchedule.date == d,
            )
        ).scalars().first()
        if exists:
            continue
        db.add(DoctorSchedule(doctor_id=doctor.id, branch_id=branch.id, date=d, start_time=start_time, end_time=end_time))
        created += 1
    db.commit()
    return created


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM branches LIMIT 1"))
        except ProgrammingError:
            db.rollback()
            logger.warning("[seed] branches table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        branch = ensure_branch(db, "Central branch", "Ulaanbaatar")
        ensure_user(db, "admin@clinic.local", "admin", "Admin")
        doctors = [
            ensure_user(db, "doctor1@clinic.local", ROLE_DOCTOR, "Doctor One", branch.id),
            ensure_user(db, "doctor2@clinic.local", ROLE_DOCTOR, "Doctor Two", branch.id),
        ]
        created = 0
        for doctor in doctors:
            created += ensure_schedules(db, doctor, branch, date.today(), SCHEDULE_DAYS, "09:00", "18:00")
        get_or_create_placeholder_patient(db, branch.id)
        db.commit()
        logger.info("[seed] branch=%s doctors=%d schedules_created=%d", branch.id, len(doctors), created)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
