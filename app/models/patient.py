from sqlalchemy import String, Integer, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = (
        # A registration number (including the online placeholder sentinel) names one patient per branch
        UniqueConstraint("branch_id", "reg_no", name="uq_patients_branch_reg_no"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[int] = mapped_column(Integer, index=True)
    ovog: Mapped[str] = mapped_column(String(120), default="")  # family name
    name: Mapped[str] = mapped_column(String(120))
    phone: Mapped[str] = mapped_column(String(40), nullable=True)
    reg_no: Mapped[str] = mapped_column(String(40), index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
