"""initial: clinic collaborators, online holds, deposits, qpay intents

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ONLINE_SLOT_PREDICATE = "status IN ('ONLINE_HELD', 'ONLINE_CONFIRMED')"


def upgrade() -> None:
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_branch_id", "users", ["branch_id"])

    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("ovog", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("reg_no", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_patients_branch_id", "patients", ["branch_id"])
    op.create_index("ix_patients_reg_no", "patients", ["reg_no"])

    op.create_table(
        "doctor_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("doctor_id", "branch_id", "date", name="uq_doctor_schedule_day"),
    )
    op.create_index("ix_doctor_schedules_doctor_id", "doctor_schedules", ["doctor_id"])
    op.create_index("ix_doctor_schedules_branch_id", "doctor_schedules", ["branch_id"])
    op.create_index("ix_doctor_schedules_date", "doctor_schedules", ["date"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="PENDING"),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_doctor_date", "bookings", ["doctor_id", "date"])
    op.create_index("ix_bookings_branch_id", "bookings", ["branch_id"])
    op.create_index("ix_bookings_patient_id", "bookings", ["patient_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index(
        "uq_bookings_online_slot", "bookings", ["doctor_id", "date", "start_time"],
        unique=True,
        postgresql_where=sa.text(ONLINE_SLOT_PREDICATE),
        sqlite_where=sa.text(ONLINE_SLOT_PREDICATE),
    )

    op.create_table(
        "booking_deposits",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="NEW"),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("qpay_invoice_id", sa.String(length=80), nullable=False),
        sa.Column("sender_invoice_no", sa.String(length=64), nullable=False),
        sa.Column("callback_token", sa.String(length=128), nullable=False),
        sa.Column("paid_amount", sa.Integer(), nullable=True),
        sa.Column("qpay_payment_id", sa.String(length=80), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("sender_invoice_no", name="uq_booking_deposits_sender_invoice_no"),
    )
    op.create_index("ix_booking_deposits_booking_id", "booking_deposits", ["booking_id"], unique=True)
    op.create_index("ix_booking_deposits_branch_id", "booking_deposits", ["branch_id"])
    op.create_index("ix_booking_deposits_status", "booking_deposits", ["status"])
    op.create_index("ix_booking_deposits_hold_expires_at", "booking_deposits", ["hold_expires_at"])
    op.create_index("ix_booking_deposits_qpay_invoice_id", "booking_deposits", ["qpay_invoice_id"], unique=True)

    op.create_table(
        "qpay_intents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("environment", sa.String(length=10), nullable=False, server_default="sandbox"),
        sa.Column("object_type", sa.String(length=20), nullable=False, server_default="INVOICE"),
        sa.Column("object_id", sa.Integer(), nullable=False),
        sa.Column("qpay_invoice_id", sa.String(length=80), nullable=False),
        sa.Column("sender_invoice_no", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="NEW"),
        sa.Column("paid_amount", sa.Integer(), nullable=True),
        sa.Column("qpay_payment_id", sa.String(length=80), nullable=True),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("sender_invoice_no", name="uq_qpay_intents_sender_invoice_no"),
    )
    op.create_index("ix_qpay_intents_object_id", "qpay_intents", ["object_id"])
    op.create_index("ix_qpay_intents_qpay_invoice_id", "qpay_intents", ["qpay_invoice_id"], unique=True)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor", sa.String(length=60), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("qpay_intents")
    op.drop_table("booking_deposits")
    op.drop_index("uq_bookings_online_slot", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("doctor_schedules")
    op.drop_table("patients")
    op.drop_table("users")
    op.drop_table("branches")
