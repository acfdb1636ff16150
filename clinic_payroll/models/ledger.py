from datetime import datetime
from clinic_payroll.extensions import db


class RevenueLine(db.Model):
    """
    One row of the daily cash ledger, reduced to what payroll needs.

    self_pay_amount is the sum of the self-pay treatment columns (prostho, implant,
    ortho, ...). retail_amount covers products and take-home whitening kits.
    """
    __tablename__ = "revenue_lines"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    work_date = db.Column(db.Date, nullable=False)
    patient_label = db.Column(db.String(120))

    consultant_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)
    retail_staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="SET NULL"), nullable=True)

    self_pay_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    retail_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_revenue_lines_clinic_date", "clinic_id", "work_date"),
    )


class MealCharge(db.Model):
    __tablename__ = "meal_charges"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.Integer, db.ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff_members.id", ondelete="CASCADE"), nullable=False)
    charge_date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    note = db.Column(db.String(255))

    __table_args__ = (
        db.Index("ix_meal_charges_clinic_date", "clinic_id", "charge_date"),
    )
