from datetime import datetime
from clinic_payroll.extensions import db

STAFF_ROLES = ("consultant", "trainee", "assistant", "manager", "part_time")


class Clinic(db.Model):
    __tablename__ = "clinics"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    staff = db.relationship("StaffMember", back_populates="clinic", lazy="dynamic")


class StaffMember(db.Model):
    """Roster entry. Pay fields are whole currency units per month."""
    __tablename__ = "staff_members"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="RESTRICT"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.Enum(*STAFF_ROLES, name="staff_role_enum"), nullable=False, default="assistant")

    base_salary = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    allowance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    monthly_insurance_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # employee share, labor + health

    onboard_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_staff_clinic_active", "clinic_id", "is_active"),
    )

    clinic = db.relationship("Clinic", back_populates="staff", lazy="joined")
