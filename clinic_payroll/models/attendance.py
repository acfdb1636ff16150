from datetime import datetime
from clinic_payroll.extensions import db


class StaffAttendanceStats(db.Model):
    """
    Monthly attendance rollup per staff member, written by the scheduling side.
    Leave and Sunday overtime are in days (half days allowed); late_count is occurrences.
    """
    __tablename__ = "staff_attendance_stats"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)

    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)

    personal_leave_days = db.Column(db.Float, default=0.0)
    sick_leave_days = db.Column(db.Float, default=0.0)
    special_leave_days = db.Column(db.Float, default=0.0)
    late_count = db.Column(db.Integer, default=0)
    sunday_overtime_days = db.Column(db.Float, default=0.0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("staff_id", "year", "month", name="uq_staff_attendance_stats_month"),
        db.Index("ix_staff_attendance_stats_period", "clinic_id", "year", "month"),
    )
