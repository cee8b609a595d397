from datetime import datetime, timezone
from sqlalchemy import String, Integer, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base

class QPayIntent(Base):
    """A gateway invoice issued for a non-booking object (e.g. a clinic bill)."""
    __tablename__ = "qpay_intents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    environment: Mapped[str] = mapped_column(String(10), default="sandbox")  # sandbox|live
    object_type: Mapped[str] = mapped_column(String(20), default="INVOICE")
    object_id: Mapped[int] = mapped_column(Integer, index=True)

    qpay_invoice_id: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    sender_invoice_no: Mapped[str] = mapped_column(String(64), unique=True)
    amount: Mapped[int] = mapped_column(Integer)

    status: Mapped[str] = mapped_column(String(12), default="NEW")  # NEW|PAID
    paid_amount: Mapped[int] = mapped_column(Integer, nullable=True)
    qpay_payment_id: Mapped[str] = mapped_column(String(80), nullable=True)
    raw: Mapped[dict] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
