"""Typed value objects passed between the payroll collaborators and the compensation engine.

Everything here is already normalised: adapters (SQL stores, fakes in tests) build
these shapes, the engine never sees raw ledger or schedule records.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from typing import Any, Dict, Hashable, Optional, Tuple, Union

Number = Union[int, float, Decimal]
StaffId = Hashable

PART_TIME = "part_time"
CONSULTANT = "consultant"

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(month: str) -> Tuple[int, int]:
    """'2025-03' -> (2025, 3). Raises ValueError for anything else."""
    m = _PERIOD_RE.match(str(month or "").strip())
    if not m:
        raise ValueError(f"month must be YYYY-MM, got {month!r}")
    year, mon = int(m.group(1)), int(m.group(2))
    if not 1 <= mon <= 12:
        raise ValueError(f"month out of range: {month!r}")
    return year, mon


@dataclass(frozen=True)
class StaffMember:
    id: StaffId
    name: str
    role: str
    base_salary: Number = 0
    allowance: Number = 0
    monthly_insurance_cost: Number = 0

    @property
    def is_part_time(self) -> bool:
        return self.role == PART_TIME

    @property
    def is_consultant(self) -> bool:
        return self.role == CONSULTANT


@dataclass(frozen=True)
class AttendanceStats:
    personal_leave_days: Number = 0
    sick_leave_days: Number = 0
    special_leave_days: Number = 0
    late_count: int = 0
    sunday_overtime_days: Number = 0


@dataclass(frozen=True)
class RevenueAttribution:
    self_pay_amount: Number = 0
    retail_amount: Number = 0


# Canonical override field names double as the salary_overrides column names.
OT_MINUTES = "regular_overtime_minutes"
INSURANCE = "labor_health_insurance"
ADJUSTMENT = "other_adjustment"

OVERRIDE_FIELD_ALIASES = {
    "ot_minutes": OT_MINUTES,
    "otMinutes": OT_MINUTES,
    "regular_ot_minutes": OT_MINUTES,
    OT_MINUTES: OT_MINUTES,
    "insurance": INSURANCE,
    INSURANCE: INSURANCE,
    "adjustment": ADJUSTMENT,
    ADJUSTMENT: ADJUSTMENT,
}


@dataclass(frozen=True)
class SalaryOverride:
    regular_overtime_minutes: Optional[Number] = None
    labor_health_insurance: Optional[Number] = None
    other_adjustment: Optional[Number] = None

    def with_field(self, name: str, value: Optional[Number]) -> "SalaryOverride":
        return replace(self, **{name: value})


@dataclass(frozen=True)
class PayrollRunConfig:
    """Run-wide settings, passed to every recompute instead of living in module state."""
    attendance_bonus_base: Number = 3000
    per_minute_ot_rate: Number = Decimal("3.5")


@dataclass(frozen=True)
class SalaryRow:
    """
    One line of the monthly salary sheet. Fully derived; never edit a field directly,
    go through salary_rules.with_net_pay() so net_pay stays the sum of its terms.
    """
    staff: StaffMember

    total_base: int
    daily_rate: int

    personal_leave_days: float
    sick_leave_days: float
    special_leave_days: float
    late_count: int
    sunday_overtime_days: float
    ytd_sick_days: float
    attendance_summary: str

    leave_deduction: int
    full_attendance_bonus: int
    disqualification_reasons: Tuple[str, ...]
    bonus_notes: Tuple[str, ...]  # reductions that did not zero the bonus, e.g. sick days past the buffer
    deductible_sick_days: float

    sunday_ot_pay: int
    regular_ot_minutes: float
    regular_ot_pay: int

    base_bonus: int
    pool_contribution: int
    pool_share: int
    pool_eligible: bool
    performance_bonus: int

    meal_deduction: int
    # manual amounts, carried as entered (not rounded)
    insurance: Decimal
    adjustment: Decimal

    net_pay: Number = 0

    @property
    def staff_id(self) -> StaffId:
        return self.staff.id

    @property
    def disqualification_reason(self) -> str:
        return ", ".join(self.disqualification_reasons)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "staff": {f.name: _json_safe(getattr(self.staff, f.name)) for f in fields(self.staff)},
        }
        for f in fields(self):
            if f.name == "staff":
                continue
            out[f.name] = _json_safe(getattr(self, f.name))
        out["disqualification_reason"] = self.disqualification_reason
        return out


def _json_safe(v):
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, tuple):
        return [_json_safe(x) for x in v]
    return v
