"""patients: one registration number per branch

Revision ID: 0002_patient_reg_no_unique
Revises: 0001_initial
Create Date: 2026-10-18

"""

from alembic import op

revision = "0002_patient_reg_no_unique"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("patients") as batch:
        batch.create_unique_constraint("uq_patients_branch_reg_no", ["branch_id", "reg_no"])


def downgrade() -> None:
    with op.batch_alter_table("patients") as batch:
        batch.drop_constraint("uq_patients_branch_reg_no", type_="unique")
