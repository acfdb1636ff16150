"""
Monthly compensation engine.

Turns the roster, attendance stats, revenue attribution, meal charges, pool rate and
manually entered overrides of one clinic month into a salary sheet (one SalaryRow per
non-part-time staff member).

Usage:
    engine = CompensationEngine(sources)
    rows = await engine.recompute(clinic_id, "2025-03", PayrollRunConfig())
    row = await engine.update_field(staff_id, "ot_minutes", 120)
    await engine.drain()          # before the event loop goes away

Reads fan out concurrently and rows are only published once the whole batch is in.
A recompute that gets overtaken by a newer one is thrown away (generation token).
Override edits patch the row in memory right away and are written to the store in a
background task; a failed write is logged and left for the next recompute to reconcile.

An engine is bound to the event loop it first schedules writes on and is not
thread-safe. Web requests each build their own; share one only within a single loop.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Tuple

from clinic_payroll.services import salary_rules as rules
from clinic_payroll.services.bonus_pool import PoolDistribution, PoolEntry, distribute_bonus_pool
from clinic_payroll.services.salary_types import (
    ADJUSTMENT,
    INSURANCE,
    OT_MINUTES,
    OVERRIDE_FIELD_ALIASES,
    AttendanceStats,
    Number,
    PayrollRunConfig,
    RevenueAttribution,
    SalaryOverride,
    SalaryRow,
    StaffId,
    StaffMember,
    parse_period,
)

log = logging.getLogger(__name__)


# ---------- errors ----------

class CompensationError(Exception):
    """Base class for salary engine errors."""


class CollaboratorFetchError(CompensationError):
    """One or more input fetches failed; nothing was published."""

    def __init__(self, clinic_id, month: str, failures: Mapping[str, BaseException]):
        self.clinic_id = clinic_id
        self.month = month
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"payroll inputs for clinic {clinic_id} {month} failed to load: {names}")

    @property
    def failed(self) -> Tuple[str, ...]:
        return tuple(sorted(self.failures))


class StaleRecomputeError(CompensationError):
    """A newer recompute started while this one was in flight; its result was dropped."""

    def __init__(self, generation: int, current: int):
        self.generation = generation
        self.current = current
        super().__init__(f"recompute #{generation} superseded by #{current}")


class EngineNotReadyError(CompensationError):
    """update_field() called before any successful recompute."""


class UnknownStaffError(CompensationError, KeyError):
    def __init__(self, staff_id):
        self.staff_id = staff_id
        super().__init__(staff_id)


class UnknownFieldError(CompensationError, ValueError):
    def __init__(self, field):
        self.field = field
        super().__init__(f"unknown override field {field!r}; expected one of ot_minutes, insurance, adjustment")


# ---------- collaborators ----------

class PayrollSources(Protocol):
    """Everything the engine reads from or writes to. All calls are I/O and awaited."""

    async def get_roster(self, clinic_id) -> List[StaffMember]: ...

    async def get_attendance_stats(self, clinic_id, month: str) -> Mapping[StaffId, AttendanceStats]: ...

    async def get_ytd_sick_days(self, clinic_id, staff_id: StaffId, year: int, month: int) -> Number: ...

    async def get_revenue_attribution(self, clinic_id, month: str) -> Mapping[StaffId, RevenueAttribution]: ...

    async def get_meal_deduction(self, clinic_id, month: str) -> Mapping[StaffId, Number]: ...

    async def get_bonus_pool_rate(self, clinic_id, month: str) -> Optional[Number]: ...

    async def get_overrides(self, clinic_id, month: str) -> Mapping[StaffId, SalaryOverride]: ...

    async def save_override_field(self, clinic_id, month: str, staff_id: StaffId, field: str, value: Number) -> None: ...


# ---------- row assembly ----------

def build_salary_row(
    staff: StaffMember,
    stats: Optional[AttendanceStats],
    ytd_sick_days: Any,
    pool_entry: Optional[PoolEntry],
    meal_deduction: Any,
    override: Optional[SalaryOverride],
    config: PayrollRunConfig,
) -> SalaryRow:
    stats = stats or AttendanceStats()
    override = override or SalaryOverride()

    personal = rules.non_negative(stats.personal_leave_days, "personal_leave_days")
    sick = rules.non_negative(stats.sick_leave_days, "sick_leave_days")
    special = rules.non_negative(stats.special_leave_days, "special_leave_days")
    late = int(rules.non_negative(stats.late_count, "late_count"))
    sunday_days = rules.non_negative(stats.sunday_overtime_days, "sunday_overtime_days")
    ytd = rules.non_negative(ytd_sick_days, "ytd_sick_days")

    total_base = rules.total_base(staff.base_salary, staff.allowance)
    rate = rules.daily_rate(total_base)
    bonus = rules.attendance_bonus(personal, sick, late, config.attendance_bonus_base, ytd)

    ot_minutes = rules.non_negative(override.regular_overtime_minutes, OT_MINUTES)
    insurance = (
        override.labor_health_insurance
        if override.labor_health_insurance is not None
        else staff.monthly_insurance_cost
    )

    row = SalaryRow(
        staff=staff,
        total_base=total_base,
        daily_rate=rate,
        personal_leave_days=float(personal),
        sick_leave_days=float(sick),
        special_leave_days=float(special),
        late_count=late,
        sunday_overtime_days=float(sunday_days),
        ytd_sick_days=float(ytd),
        attendance_summary=rules.attendance_summary(
            AttendanceStats(personal, sick, special, late, sunday_days)
        ),
        leave_deduction=rules.leave_deduction(personal, sick, rate),
        full_attendance_bonus=bonus.amount,
        disqualification_reasons=bonus.reasons,
        bonus_notes=bonus.notes,
        deductible_sick_days=float(bonus.deductible_sick_days),
        sunday_ot_pay=rules.sunday_ot_pay(rate, sunday_days),
        regular_ot_minutes=float(ot_minutes),
        regular_ot_pay=rules.regular_ot_pay(ot_minutes, config.per_minute_ot_rate),
        base_bonus=pool_entry.base_bonus if pool_entry else 0,
        pool_contribution=pool_entry.contribution if pool_entry else 0,
        pool_share=pool_entry.share if pool_entry else 0,
        pool_eligible=pool_entry.eligible if pool_entry else False,
        performance_bonus=pool_entry.final_bonus if pool_entry else 0,
        meal_deduction=rules.round_half_up(rules.non_negative(meal_deduction, "meal_deduction")),
        insurance=rules.to_decimal(insurance, INSURANCE),
        adjustment=rules.to_decimal(override.other_adjustment, ADJUSTMENT),
    )
    return rules.with_net_pay(row)


def apply_override(row: SalaryRow, field: str, value: Any, config: PayrollRunConfig) -> SalaryRow:
    """Patch the terms one override field feeds and recompute net pay for this row only."""
    if field == OT_MINUTES:
        minutes = rules.non_negative(value, OT_MINUTES)
        return rules.with_net_pay(
            row,
            regular_ot_minutes=float(minutes),
            regular_ot_pay=rules.regular_ot_pay(minutes, config.per_minute_ot_rate),
        )
    if field == INSURANCE:
        return rules.with_net_pay(row, insurance=rules.to_decimal(value, INSURANCE))
    if field == ADJUSTMENT:
        return rules.with_net_pay(row, adjustment=rules.to_decimal(value, ADJUSTMENT))
    raise UnknownFieldError(field)


def resolve_field(field: str) -> str:
    try:
        return OVERRIDE_FIELD_ALIASES[field]
    except (KeyError, TypeError):
        raise UnknownFieldError(field) from None


# ---------- engine ----------

_SNAPSHOT_CALLS = (
    "roster",
    "attendance_stats",
    "revenue_attribution",
    "meal_deduction",
    "bonus_pool_rate",
    "overrides",
)


class CompensationEngine:
    """Owns the salary sheet of one (clinic, month) context at a time."""

    def __init__(self, sources: PayrollSources) -> None:
        self._sources = sources
        self._generation = 0
        self._context: Optional[Tuple[Any, str]] = None
        self._config = PayrollRunConfig()
        self._rows: Dict[StaffId, SalaryRow] = {}
        self._overrides: Dict[StaffId, SalaryOverride] = {}
        self._pool: Optional[PoolDistribution] = None

        self._write_seq = itertools.count(1)
        # (clinic, month, staff, field) -> (write seq, value) for writes not yet confirmed
        self._unconfirmed: Dict[Tuple[Any, str, StaffId, str], Tuple[int, Any]] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._failed_writes: List[Tuple[StaffId, str]] = []

    # --- read side ---

    @property
    def rows(self) -> List[SalaryRow]:
        return list(self._rows.values())

    @property
    def context(self) -> Optional[Tuple[Any, str]]:
        return self._context

    @property
    def config(self) -> PayrollRunConfig:
        return self._config

    @property
    def bonus_pool(self) -> Optional[PoolDistribution]:
        return self._pool

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def overrides(self) -> Dict[StaffId, SalaryOverride]:
        """Override values the current sheet was built from, including local edits."""
        return dict(self._overrides)

    def row(self, staff_id: StaffId) -> SalaryRow:
        try:
            return self._rows[staff_id]
        except KeyError:
            raise UnknownStaffError(staff_id) from None

    # --- full recompute ---

    async def recompute(self, clinic_id, month: str, config: Optional[PayrollRunConfig] = None) -> List[SalaryRow]:
        year, mon = parse_period(month)
        config = config or PayrollRunConfig()

        self._generation += 1
        generation = self._generation
        log.info("salary recompute #%s clinic=%s month=%s", generation, clinic_id, month)

        snapshot = await self._gather(
            clinic_id,
            month,
            {
                "roster": self._sources.get_roster(clinic_id),
                "attendance_stats": self._sources.get_attendance_stats(clinic_id, month),
                "revenue_attribution": self._sources.get_revenue_attribution(clinic_id, month),
                "meal_deduction": self._sources.get_meal_deduction(clinic_id, month),
                "bonus_pool_rate": self._sources.get_bonus_pool_rate(clinic_id, month),
                "overrides": self._sources.get_overrides(clinic_id, month),
            },
        )
        self._check_current(generation)

        staff = [s for s in (snapshot["roster"] or []) if not s.is_part_time]
        ytd = await self._gather(
            clinic_id,
            month,
            {
                f"ytd_sick_days[{s.id}]": self._sources.get_ytd_sick_days(clinic_id, s.id, year, mon)
                for s in staff
            },
        )
        self._check_current(generation)

        overrides = self._merge_unconfirmed(clinic_id, month, snapshot["overrides"] or {})
        stats = snapshot["attendance_stats"] or {}
        meals = snapshot["meal_deduction"] or {}

        pool = distribute_bonus_pool(staff, snapshot["revenue_attribution"] or {}, snapshot["bonus_pool_rate"])

        rows: Dict[StaffId, SalaryRow] = {}
        for s in staff:
            rows[s.id] = build_salary_row(
                staff=s,
                stats=stats.get(s.id),
                ytd_sick_days=ytd[f"ytd_sick_days[{s.id}]"],
                pool_entry=pool.for_staff(s.id),
                meal_deduction=meals.get(s.id),
                override=overrides.get(s.id),
                config=config,
            )

        self._context = (clinic_id, month)
        self._config = config
        self._rows = rows
        self._overrides = overrides
        self._pool = pool
        log.info("salary recompute #%s done: %s rows", generation, len(rows))
        return self.rows

    async def _gather(self, clinic_id, month: str, calls: Dict[str, Any]) -> Dict[str, Any]:
        names = list(calls)
        results = await asyncio.gather(*calls.values(), return_exceptions=True)

        failures = {n: r for n, r in zip(names, results) if isinstance(r, BaseException)}
        if failures:
            for name, exc in failures.items():
                log.warning("payroll input %s failed for clinic=%s month=%s: %r", name, clinic_id, month, exc)
            err = CollaboratorFetchError(clinic_id, month, failures)
            raise err from next(iter(failures.values()))
        return dict(zip(names, results))

    def _check_current(self, generation: int) -> None:
        if generation != self._generation:
            log.info("dropping salary recompute #%s (current #%s)", generation, self._generation)
            raise StaleRecomputeError(generation, self._generation)

    def _merge_unconfirmed(self, clinic_id, month: str, stored: Mapping[StaffId, SalaryOverride]) -> Dict[StaffId, SalaryOverride]:
        """Stored overrides plus this engine's own edits whose writes have not resolved yet."""
        merged = dict(stored)
        for (c, m, staff_id, field), (_, value) in self._unconfirmed.items():
            if c == clinic_id and m == month:
                merged[staff_id] = (merged.get(staff_id) or SalaryOverride()).with_field(field, value)
        return merged

    # --- single-field edits ---

    async def update_field(self, staff_id: StaffId, field: str, raw_value: Any) -> SalaryRow:
        """
        Apply one manual edit to the in-memory sheet and queue the durable write.
        Returns the updated row without waiting for the write.
        """
        if self._context is None:
            raise EngineNotReadyError("recompute a clinic month before editing it")
        name = resolve_field(field)
        current = self.row(staff_id)
        value = rules.to_decimal(raw_value, name)

        updated = apply_override(current, name, value, self._config)
        self._rows[staff_id] = updated
        self._overrides[staff_id] = (self._overrides.get(staff_id) or SalaryOverride()).with_field(name, value)

        clinic_id, month = self._context
        key = (clinic_id, month, staff_id, name)
        seq = next(self._write_seq)
        self._unconfirmed[key] = (seq, value)

        task = asyncio.get_running_loop().create_task(self._persist(key, seq, value))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return updated

    async def _persist(self, key, seq: int, value) -> None:
        clinic_id, month, staff_id, name = key
        try:
            await self._sources.save_override_field(clinic_id, month, staff_id, name, value)
        except Exception:
            log.exception("saving %s=%s for staff %s (clinic=%s month=%s) failed", name, value, staff_id, clinic_id, month)
            self._failed_writes.append((staff_id, name))
        finally:
            pending = self._unconfirmed.get(key)
            if pending and pending[0] == seq:
                del self._unconfirmed[key]

    @property
    def pending_writes(self) -> int:
        return len(self._tasks)

    async def drain(self) -> List[Tuple[StaffId, str]]:
        """Wait for queued override writes. Returns (staff_id, field) of writes that failed since the last drain."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        failed, self._failed_writes = self._failed_writes, []
        return failed
