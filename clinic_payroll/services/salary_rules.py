"""
Salary sheet rules: attendance bonus, leave deduction, overtime and net pay.

All currency results are whole units rounded half-up (2.5 -> 3, -2.5 -> -3).
Intermediate arithmetic is Decimal so results do not depend on float noise.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Tuple

from clinic_payroll.services.salary_types import AttendanceStats, SalaryRow

log = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
SICK_BUFFER_DAYS = 10
SICK_LEAVE_PAY_FACTOR = Decimal("0.5")

LATE = "late"
PERSONAL_LEAVE = "personal-leave"
SICK_LEAVE = "sick-leave"

_ZERO = Decimal("0")


# ---------- number hygiene ----------

def to_decimal(value: Any, name: str = "value") -> Decimal:
    """
    Coerce a number-ish value to Decimal. None, blanks, garbage and NaN/Infinity become 0.
    Strings are accepted the way the salary-sheet input boxes send them.
    """
    if value is None or isinstance(value, bool):
        return _ZERO
    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value).strip() or "0")
    except (InvalidOperation, ValueError):
        log.debug("non-numeric %s=%r treated as 0", name, value)
        return _ZERO
    if not d.is_finite():
        log.debug("non-finite %s=%r treated as 0", name, value)
        return _ZERO
    return d


def non_negative(value: Any, name: str = "value") -> Decimal:
    d = to_decimal(value, name)
    if d < 0:
        log.debug("negative %s=%r treated as 0", name, value)
        return _ZERO
    return d


def round_half_up(value: Any) -> int:
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---------- base pay, leave, overtime ----------

def total_base(base_salary: Any, allowance: Any) -> int:
    return round_half_up(non_negative(base_salary, "base_salary") + non_negative(allowance, "allowance"))


def daily_rate(total_base_amount: Any) -> int:
    return round_half_up(to_decimal(total_base_amount) / DAYS_PER_MONTH)


def leave_deduction(personal_leave_days: Any, sick_leave_days: Any, rate: int) -> int:
    """Personal leave costs a full day, sick leave half a day. Special leave is free."""
    personal = non_negative(personal_leave_days, "personal_leave_days")
    sick = non_negative(sick_leave_days, "sick_leave_days")
    return round_half_up(personal * rate + sick * rate * SICK_LEAVE_PAY_FACTOR)


def sunday_ot_pay(rate: int, sunday_overtime_days: Any) -> int:
    return round_half_up(rate * non_negative(sunday_overtime_days, "sunday_overtime_days"))


def regular_ot_pay(minutes: Any, per_minute_rate: Any) -> int:
    return round_half_up(non_negative(minutes, "regular_overtime_minutes") * to_decimal(per_minute_rate))


# ---------- attendance bonus ----------

@dataclass(frozen=True)
class AttendanceBonus:
    amount: int
    reasons: Tuple[str, ...] = ()  # why the bonus was forfeited
    notes: Tuple[str, ...] = ()  # why it was reduced without being forfeited
    deductible_sick_days: Decimal = _ZERO

    @property
    def disqualified(self) -> bool:
        return self.amount == 0 and bool(self.reasons)


def attendance_bonus(
    personal_leave_days: Any,
    sick_leave_days: Any,
    late_count: Any,
    bonus_base: Any,
    ytd_sick_days: Any,
) -> AttendanceBonus:
    """
    Full-attendance bonus. Lateness or any personal leave forfeits it.
    Sick leave only eats into it once the yearly buffer of SICK_BUFFER_DAYS is used up,
    at 1/30 of the base per excess day.
    """
    base = to_decimal(bonus_base, "attendance_bonus_base")
    personal = non_negative(personal_leave_days, "personal_leave_days")
    sick = non_negative(sick_leave_days, "sick_leave_days")
    late = non_negative(late_count, "late_count")

    reasons = []
    if late > 0:
        reasons.append(LATE)
    if personal > 0:
        reasons.append(PERSONAL_LEAVE)
    if reasons:
        return AttendanceBonus(amount=0, reasons=tuple(reasons))

    if sick > 0:
        remaining = max(_ZERO, SICK_BUFFER_DAYS - non_negative(ytd_sick_days, "ytd_sick_days"))
        deductible = max(_ZERO, sick - remaining)
        amount = base - (base / DAYS_PER_MONTH) * deductible
        return AttendanceBonus(
            amount=max(0, round_half_up(amount)),
            notes=(SICK_LEAVE,) if deductible > 0 else (),
            deductible_sick_days=deductible,
        )

    return AttendanceBonus(amount=max(0, round_half_up(base)))


def attendance_summary(stats: AttendanceStats) -> str:
    parts = []
    for label, value in (
        ("personal", stats.personal_leave_days),
        ("sick", stats.sick_leave_days),
        ("special", stats.special_leave_days),
    ):
        d = non_negative(value)
        if d > 0:
            parts.append(f"{label}:{d.normalize():f}")
    late = non_negative(stats.late_count)
    if late > 0:
        parts.append(f"late:{int(late)}")
    return " / ".join(parts) if parts else "full attendance"


# ---------- net pay ----------

def net_pay(
    *,
    total_base: int,
    leave_deduction: int,
    full_attendance_bonus: int,
    sunday_ot_pay: int,
    regular_ot_pay: int,
    performance_bonus: int,
    meal_deduction: int,
    insurance: Any,
    adjustment: Any,
) -> Any:
    """Whole units, unless the manually entered insurance or adjustment carry a fraction."""
    return (
        total_base
        - leave_deduction
        + full_attendance_bonus
        + sunday_ot_pay
        + regular_ot_pay
        + performance_bonus
        - meal_deduction
        - insurance
        + adjustment
    )


def with_net_pay(row: SalaryRow, **changes) -> SalaryRow:
    """The only way to derive a changed row: apply changes, then recompute net_pay from the terms."""
    row = replace(row, **changes)
    return replace(
        row,
        net_pay=net_pay(
            total_base=row.total_base,
            leave_deduction=row.leave_deduction,
            full_attendance_bonus=row.full_attendance_bonus,
            sunday_ot_pay=row.sunday_ot_pay,
            regular_ot_pay=row.regular_ot_pay,
            performance_bonus=row.performance_bonus,
            meal_deduction=row.meal_deduction,
            insurance=row.insurance,
            adjustment=row.adjustment,
        ),
    )
