"""
Performance bonus with a shared consultant pool.

Each staff member earns a base bonus from the revenue attributed to them:

    base_bonus = round(self_pay * 1% + retail * 10%)

Consultants pay pool_rate% of a positive base bonus into a clinic pool, and every
consultant (whether they contributed or not) receives an equal share of it:

    contribution = round(base_bonus * pool_rate / 100)      consultants with base_bonus > 0
    share        = round(pool_total / eligible_count)        0 when nobody is eligible
    final        = base_bonus - contribution + share         share only for consultants

Other roles keep their whole base bonus and never receive a share. The pool only moves
money around; totals differ from the sum of base bonuses by rounding of the share only.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from clinic_payroll.services.salary_rules import non_negative, round_half_up, to_decimal
from clinic_payroll.services.salary_types import RevenueAttribution, StaffId, StaffMember

SELF_PAY_RATE = Decimal("0.01")
RETAIL_RATE = Decimal("0.10")
DEFAULT_POOL_RATE = 30


@dataclass(frozen=True)
class PoolEntry:
    staff_id: StaffId
    role: str
    self_pay_amount: Decimal
    retail_amount: Decimal
    base_bonus: int
    contribution: int
    share: int
    eligible: bool

    @property
    def kept(self) -> int:
        return self.base_bonus - self.contribution

    @property
    def final_bonus(self) -> int:
        return self.kept + self.share

    def to_dict(self) -> Dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "role": self.role,
            "self_pay_amount": float(self.self_pay_amount),
            "retail_amount": float(self.retail_amount),
            "base_bonus": self.base_bonus,
            "contribution": self.contribution,
            "kept": self.kept,
            "share": self.share,
            "eligible": self.eligible,
            "final_bonus": self.final_bonus,
        }


@dataclass(frozen=True)
class PoolDistribution:
    pool_rate: Decimal
    pool_total: int
    eligible_count: int
    share: int
    entries: Tuple[PoolEntry, ...]

    def for_staff(self, staff_id: StaffId) -> Optional[PoolEntry]:
        for e in self.entries:
            if e.staff_id == staff_id:
                return e
        return None

    @property
    def total_base_bonus(self) -> int:
        return sum(e.base_bonus for e in self.entries)

    @property
    def total_final_bonus(self) -> int:
        return sum(e.final_bonus for e in self.entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pool_rate": float(self.pool_rate),
            "pool_total": self.pool_total,
            "eligible_count": self.eligible_count,
            "share": self.share,
            "total_base_bonus": self.total_base_bonus,
            "total_final_bonus": self.total_final_bonus,
            "entries": [e.to_dict() for e in self.entries],
        }


def distribute_bonus_pool(
    staff: Iterable[StaffMember],
    revenue: Mapping[StaffId, RevenueAttribution],
    pool_rate: Any = DEFAULT_POOL_RATE,
    *,
    self_pay_rate: Any = SELF_PAY_RATE,
    retail_rate: Any = RETAIL_RATE,
) -> PoolDistribution:
    """
    Run the pool once over the whole staff set of a clinic month.
    pool_rate is used as given; range checks belong to whoever stores it.
    """
    rate = to_decimal(DEFAULT_POOL_RATE if pool_rate is None else pool_rate, "pool_rate")
    sp_rate = to_decimal(self_pay_rate, "self_pay_rate")
    rt_rate = to_decimal(retail_rate, "retail_rate")

    first_pass = []
    pool_total = 0
    eligible_count = 0

    for member in staff:
        attribution = revenue.get(member.id) or RevenueAttribution()
        self_pay = non_negative(attribution.self_pay_amount, "self_pay_amount")
        retail = non_negative(attribution.retail_amount, "retail_amount")

        base_bonus = round_half_up(self_pay * sp_rate + retail * rt_rate)

        contribution = 0
        eligible = member.is_consultant
        if eligible:
            eligible_count += 1
            if base_bonus > 0:
                contribution = round_half_up(Decimal(base_bonus) * rate / 100)

        pool_total += contribution
        first_pass.append((member, self_pay, retail, base_bonus, contribution, eligible))

    share = round_half_up(Decimal(pool_total) / eligible_count) if eligible_count > 0 else 0

    entries = tuple(
        PoolEntry(
            staff_id=member.id,
            role=member.role,
            self_pay_amount=self_pay,
            retail_amount=retail,
            base_bonus=base_bonus,
            contribution=contribution,
            share=share if eligible else 0,
            eligible=eligible,
        )
        for member, self_pay, retail, base_bonus, contribution, eligible in first_pass
    )

    return PoolDistribution(
        pool_rate=rate,
        pool_total=pool_total,
        eligible_count=eligible_count,
        share=share,
        entries=entries,
    )
