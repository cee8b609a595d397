import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("API_PUBLIC_URL", "https://api.clinic.test")
os.environ.setdefault("QPAY_CLIENT_ID", "test-client")
os.environ.setdefault("QPAY_CLIENT_SECRET", "test-secret")
os.environ.setdefault("QPAY_INVOICE_CODE", "CLINIC_INVOICE")

from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_qpay_client
from app.db.session import Base, get_db, get_session_factory
from app.main import app
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.booking import Booking, BookingStatus
from app.models.booking_deposit import BookingDeposit  # noqa: F401
from app.models.branch import Branch
from app.models.doctor_schedule import DoctorSchedule
from app.models.patient import Patient  # noqa: F401
from app.models.qpay_intent import QPayIntent  # noqa: F401
from app.models.user import User, ROLE_DOCTOR
from app.services.qpay_client import InvoiceResult, PaymentCheck, PaymentRow, Outcome

CLINIC_DAY = date(2026, 11, 2)
HOLD_TIME = datetime(2026, 11, 1, 8, 0, tzinfo=timezone.utc)


class FakeQPay:
    """Stands in for QPayClient; records every call."""

    def __init__(self):
        self.created = []
        self.checks = []
        self.cancelled = []
        self.create_error = None
        self.check_error = None
        self.cancel_outcome = Outcome.success()
        self.check_result = PaymentCheck(paid=False, paid_amount=Decimal(0), payment_id=None, transaction_type=None, paid_at=None, raw={"count": 0, "rows": []})

    def create_invoice(self, **kwargs):
        if self.create_error:
            raise self.create_error
        self.created.append(kwargs)
        n = len(self.created)
        return InvoiceResult(
            invoice_id=f"qpay-inv-{n}",
            qr_text=f"qr-text-{n}",
            qr_image="aW1hZ2U=",
            urls=[{"name": "Khan bank", "description": "Khan bank", "logo": "", "link": f"khanbank://q?qPay_QRcode=qr-text-{n}"}],
            raw={"invoice_id": f"qpay-inv-{n}"},
        )

    def check_invoice_paid(self, invoice_id):
        self.checks.append(invoice_id)
        if self.check_error:
            raise self.check_error
        return self.check_result

    def cancel_invoice(self, invoice_id):
        self.cancelled.append(invoice_id)
        return self.cancel_outcome

    def report_paid(self, amount, payment_id="pay-1"):
        row = PaymentRow(payment_id=payment_id, payment_status="PAID", payment_amount=Decimal(amount), transaction_type="KHANBANK", payment_date="2026-11-01T08:03:00")
        self.check_result = PaymentCheck(
            paid=True,
            paid_amount=Decimal(amount),
            payment_id=payment_id,
            transaction_type="KHANBANK",
            paid_at=datetime(2026, 11, 1, 8, 3, tzinfo=timezone.utc),
            payments=[row],
            raw={"count": 1, "rows": [{"payment_id": payment_id, "payment_status": "PAID", "payment_amount": str(amount)}]},
        )

    def report_unpaid(self):
        self.check_result = PaymentCheck(paid=False, paid_amount=Decimal(0), payment_id=None, transaction_type=None, paid_at=None, raw={"count": 0, "rows": []})


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def qpay():
    return FakeQPay()


@pytest.fixture
def clinic(db):
    branch = Branch(name="Central branch", address="Ulaanbaatar")
    db.add(branch)
    db.flush()
    doctor = User(email="doctor@clinic.test", name="Dr. Bat", role=ROLE_DOCTOR, branch_id=branch.id)
    receptionist = User(email="front@clinic.test", name="Front desk", role="receptionist", branch_id=branch.id)
    db.add_all([doctor, receptionist])
    db.flush()
    db.add(DoctorSchedule(doctor_id=doctor.id, branch_id=branch.id, date=CLINIC_DAY, start_time="09:00", end_time="17:00"))
    db.commit()
    return SimpleNamespace(branch_id=branch.id, doctor_id=doctor.id, receptionist_id=receptionist.id, day=CLINIC_DAY)


@pytest.fixture
def add_booking(db, clinic):
    def _add(start_time, end_time, status=BookingStatus.CONFIRMED, patient_id=1):
        b = Booking(
            doctor_id=clinic.doctor_id,
            branch_id=clinic.branch_id,
            patient_id=patient_id,
            date=clinic.day,
            start_time=start_time,
            end_time=end_time,
            status=status,
        )
        db.add(b)
        db.commit()
        return b
    return _add


@pytest.fixture
def client(session_factory, qpay):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_qpay_client] = lambda: qpay
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
