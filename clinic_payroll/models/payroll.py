from datetime import datetime
from clinic_payroll.extensions import db


class BonusPoolSetting(db.Model):
    __tablename__ = "bonus_pool_settings"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    period = db.Column(db.String(7), nullable=False)  # YYYY-MM
    pool_rate = db.Column(db.Numeric(5, 2), nullable=False)  # percent, 0-100

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("clinic_id", "period", name="uq_bonus_pool_clinic_period"),
    )


class SalaryOverride(db.Model):
    """
    Manually entered salary-sheet values. NULL means "use the computed/profile default".
    Created on first edit and updated in place; payroll never deletes these rows.
    """
    __tablename__ = "salary_overrides"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    period = db.Column(db.String(7), nullable=False)  # YYYY-MM
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False)

    regular_overtime_minutes = db.Column(db.Numeric(10, 2), nullable=True)
    labor_health_insurance = db.Column(db.Numeric(12, 2), nullable=True)
    other_adjustment = db.Column(db.Numeric(12, 2), nullable=True)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("clinic_id", "period", "staff_id", name="uq_salary_override_clinic_period_staff"),
    )
