"""
SQLAlchemy-backed payroll collaborators.

Implements every read/write the compensation engine needs over this service's own
tables. Queries run inside the coroutine on the caller's app context, so these
methods must be awaited while a Flask app context is active.

None of these coroutines yield: the engine's concurrent fan-out runs the queries
one after another on the request thread. The session is not safe to share across
threads, so the queries stay on it rather than moving to a thread pool.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func

from clinic_payroll.extensions import db
from clinic_payroll.models.attendance import StaffAttendanceStats
from clinic_payroll.models.ledger import MealCharge, RevenueLine
from clinic_payroll.models.payroll import BonusPoolSetting, SalaryOverride as SalaryOverrideRecord
from clinic_payroll.models.staff import StaffMember as StaffRecord
from clinic_payroll.services.bonus_pool import DEFAULT_POOL_RATE
from clinic_payroll.services.salary_rules import to_decimal
from clinic_payroll.services.salary_types import (
    ADJUSTMENT,
    INSURANCE,
    OT_MINUTES,
    AttendanceStats,
    RevenueAttribution,
    SalaryOverride,
    StaffMember,
    parse_period,
)

log = logging.getLogger(__name__)

_OVERRIDE_COLUMNS = (OT_MINUTES, INSURANCE, ADJUSTMENT)


def month_bounds(month: str) -> Tuple[date, date]:
    year, mon = parse_period(month)
    return date(year, mon, 1), date(year, mon, calendar.monthrange(year, mon)[1])


def clamp_pool_rate(rate) -> Decimal:
    """Pool rate is a percentage; anything outside 0-100 is a misconfiguration and gets pinned."""
    d = to_decimal(rate, "pool_rate")
    return min(Decimal("100"), max(Decimal("0"), d))


class SqlPayrollSources:
    def __init__(self, default_pool_rate=DEFAULT_POOL_RATE):
        self.default_pool_rate = default_pool_rate

    # ---- roster ----
    async def get_roster(self, clinic_id) -> List[StaffMember]:
        q = (
            StaffRecord.query
            .filter(StaffRecord.clinic_id == clinic_id, StaffRecord.is_active.is_(True))
            .order_by(StaffRecord.id.asc())
        )
        return [
            StaffMember(
                id=s.id,
                name=s.name,
                role=s.role,
                base_salary=s.base_salary or 0,
                allowance=s.allowance or 0,
                monthly_insurance_cost=s.monthly_insurance_cost or 0,
            )
            for s in q.all()
        ]

    # ---- attendance ----
    async def get_attendance_stats(self, clinic_id, month: str) -> Dict[int, AttendanceStats]:
        year, mon = parse_period(month)
        rows = StaffAttendanceStats.query.filter_by(clinic_id=clinic_id, year=year, month=mon).all()
        return {
            r.staff_id: AttendanceStats(
                personal_leave_days=r.personal_leave_days or 0,
                sick_leave_days=r.sick_leave_days or 0,
                special_leave_days=r.special_leave_days or 0,
                late_count=r.late_count or 0,
                sunday_overtime_days=r.sunday_overtime_days or 0,
            )
            for r in rows
        }

    async def get_ytd_sick_days(self, clinic_id, staff_id, year: int, month: int) -> float:
        """Sick days in `year` strictly before `month`, across clinics (the buffer is per person)."""
        total = (
            db.session.query(func.coalesce(func.sum(StaffAttendanceStats.sick_leave_days), 0.0))
            .filter(
                StaffAttendanceStats.staff_id == staff_id,
                StaffAttendanceStats.year == year,
                StaffAttendanceStats.month < month,
            )
            .scalar()
        )
        return float(total or 0)

    # ---- ledger ----
    async def get_revenue_attribution(self, clinic_id, month: str) -> Dict[int, RevenueAttribution]:
        """
        Self-pay is credited to the row's consultant. Retail is credited to the retail
        staff member, falling back to the consultant when nobody is recorded.
        """
        start, end = month_bounds(month)
        in_month = (
            RevenueLine.clinic_id == clinic_id,
            RevenueLine.work_date >= start,
            RevenueLine.work_date <= end,
        )

        self_pay = (
            db.session.query(RevenueLine.consultant_id, func.sum(RevenueLine.self_pay_amount))
            .filter(*in_month, RevenueLine.self_pay_amount > 0, RevenueLine.consultant_id.isnot(None))
            .group_by(RevenueLine.consultant_id)
            .all()
        )
        retail_owner = func.coalesce(RevenueLine.retail_staff_id, RevenueLine.consultant_id)
        retail = (
            db.session.query(retail_owner, func.sum(RevenueLine.retail_amount))
            .filter(*in_month, RevenueLine.retail_amount > 0, retail_owner.isnot(None))
            .group_by(retail_owner)
            .all()
        )

        totals: Dict[int, List[Decimal]] = {}
        for staff_id, amount in self_pay:
            totals.setdefault(staff_id, [Decimal("0"), Decimal("0")])[0] += to_decimal(amount)
        for staff_id, amount in retail:
            totals.setdefault(staff_id, [Decimal("0"), Decimal("0")])[1] += to_decimal(amount)

        return {
            staff_id: RevenueAttribution(self_pay_amount=sp, retail_amount=rt)
            for staff_id, (sp, rt) in totals.items()
        }

    async def get_meal_deduction(self, clinic_id, month: str) -> Dict[int, Decimal]:
        start, end = month_bounds(month)
        rows = (
            db.session.query(MealCharge.staff_id, func.sum(MealCharge.amount))
            .filter(
                MealCharge.clinic_id == clinic_id,
                MealCharge.charge_date >= start,
                MealCharge.charge_date <= end,
            )
            .group_by(MealCharge.staff_id)
            .all()
        )
        return {staff_id: to_decimal(amount) for staff_id, amount in rows}

    # ---- bonus pool config ----
    async def get_bonus_pool_rate(self, clinic_id, month: str) -> Decimal:
        setting = BonusPoolSetting.query.filter_by(clinic_id=clinic_id, period=month).first()
        if setting is None or setting.pool_rate is None:
            return to_decimal(self.default_pool_rate)
        return to_decimal(setting.pool_rate)

    def set_bonus_pool_rate(self, clinic_id, month: str, rate) -> Decimal:
        parse_period(month)
        clamped = clamp_pool_rate(rate)
        if clamped != to_decimal(rate):
            log.warning("pool rate %r for clinic=%s month=%s clamped to %s", rate, clinic_id, month, clamped)

        setting = BonusPoolSetting.query.filter_by(clinic_id=clinic_id, period=month).first()
        if setting is None:
            setting = BonusPoolSetting(clinic_id=clinic_id, period=month, pool_rate=clamped)
            db.session.add(setting)
        else:
            setting.pool_rate = clamped
        db.session.commit()
        return clamped

    # ---- overrides ----
    async def get_overrides(self, clinic_id, month: str) -> Dict[int, SalaryOverride]:
        rows = SalaryOverrideRecord.query.filter_by(clinic_id=clinic_id, period=month).all()
        return {
            r.staff_id: SalaryOverride(
                regular_overtime_minutes=r.regular_overtime_minutes,
                labor_health_insurance=r.labor_health_insurance,
                other_adjustment=r.other_adjustment,
            )
            for r in rows
        }

    async def save_override_field(self, clinic_id, month: str, staff_id, field: str, value) -> None:
        if field not in _OVERRIDE_COLUMNS:
            raise ValueError(f"not an override column: {field!r}")
        rec: Optional[SalaryOverrideRecord] = SalaryOverrideRecord.query.filter_by(
            clinic_id=clinic_id, period=month, staff_id=staff_id
        ).first()
        if rec is None:
            rec = SalaryOverrideRecord(clinic_id=clinic_id, period=month, staff_id=staff_id)
            db.session.add(rec)
        setattr(rec, field, to_decimal(value))
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
