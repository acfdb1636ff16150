import asyncio
import random
from decimal import Decimal

import pytest

from clinic_payroll.services.compensation_engine import (
    CollaboratorFetchError,
    CompensationEngine,
    EngineNotReadyError,
    StaleRecomputeError,
    UnknownFieldError,
    UnknownStaffError,
)
from clinic_payroll.services.salary_types import (
    AttendanceStats,
    PayrollRunConfig,
    RevenueAttribution,
    SalaryOverride,
    StaffMember,
)

CFG = PayrollRunConfig(attendance_bonus_base=3000, per_minute_ot_rate=Decimal("3.5"))


class FakeSources:
    """In-memory collaborators. `fail` holds method names that should raise."""

    def __init__(self, roster=None, stats=None, ytd=None, revenue=None, meals=None, pool_rate=30):
        self.roster = list(roster or [])
        self.stats = dict(stats or {})
        self.ytd = dict(ytd or {})
        self.revenue = dict(revenue or {})
        self.meals = dict(meals or {})
        self.pool_rate = pool_rate
        self.stored = {}
        self.fail = set()
        self.gates = {}
        self.ytd_calls = []

    async def _hook(self, name, month=None):
        gate = self.gates.get((name, month))
        if gate is not None:
            await gate.wait()
        if name in self.fail:
            raise RuntimeError(f"{name} unavailable")

    async def get_roster(self, clinic_id):
        await self._hook("get_roster")
        return list(self.roster)

    async def get_attendance_stats(self, clinic_id, month):
        await self._hook("get_attendance_stats", month)
        return dict(self.stats)

    async def get_ytd_sick_days(self, clinic_id, staff_id, year, month):
        await self._hook("get_ytd_sick_days")
        self.ytd_calls.append(staff_id)
        return self.ytd.get(staff_id, 0)

    async def get_revenue_attribution(self, clinic_id, month):
        await self._hook("get_revenue_attribution")
        return dict(self.revenue)

    async def get_meal_deduction(self, clinic_id, month):
        await self._hook("get_meal_deduction")
        return dict(self.meals)

    async def get_bonus_pool_rate(self, clinic_id, month):
        await self._hook("get_bonus_pool_rate")
        return self.pool_rate

    async def get_overrides(self, clinic_id, month):
        await self._hook("get_overrides")
        return {
            staff_id: SalaryOverride(**fields)
            for (c, m, staff_id), fields in self.stored.items()
            if c == clinic_id and m == month
        }

    async def save_override_field(self, clinic_id, month, staff_id, field, value):
        await self._hook("save_override_field")
        self.stored.setdefault((clinic_id, month, staff_id), {})[field] = value


def _clinic():
    return FakeSources(
        roster=[
            StaffMember(1, "Amy", "consultant", 30000, 2000, 1200),
            StaffMember(2, "Ben", "consultant", 28000, 1000, 1000),
            StaffMember(3, "Cara", "assistant", 27000, 0, 900),
            StaffMember(4, "Eve", "part_time"),
        ],
        stats={
            2: AttendanceStats(sick_leave_days=5),
            3: AttendanceStats(late_count=1, sunday_overtime_days=1),
        },
        ytd={2: 8},
        revenue={1: RevenueAttribution(self_pay_amount=100000, retail_amount=10000)},
        meals={3: 120},
    )


def _closed_form(r):
    return (
        r.total_base
        - r.leave_deduction
        + r.full_attendance_bonus
        + r.sunday_ot_pay
        + r.regular_ot_pay
        + r.performance_bonus
        - r.meal_deduction
        - r.insurance
        + r.adjustment
    )


def test_recompute_builds_one_row_per_non_part_timer():
    src = _clinic()
    engine = CompensationEngine(src)

    rows = asyncio.run(engine.recompute(7, "2025-03", CFG))

    assert [r.staff_id for r in rows] == [1, 2, 3]
    assert sorted(src.ytd_calls) == [1, 2, 3]
    assert engine.context == (7, "2025-03")
    assert engine.generation == 1

    amy = engine.row(1)
    assert amy.total_base == 32000
    assert amy.leave_deduction == 0
    assert amy.full_attendance_bonus == 3000
    assert amy.performance_bonus == 2000 - 600 + 300
    assert amy.insurance == 1200
    assert amy.net_pay == 32000 + 3000 + 1700 - 1200

    ben = engine.row(2)
    assert ben.deductible_sick_days == 3
    assert ben.full_attendance_bonus == 2700
    assert ben.disqualification_reason == ""
    assert ben.bonus_notes == ("sick-leave",)
    assert ben.daily_rate == 967
    assert ben.leave_deduction == 2418  # 5 * 967 * 0.5 = 2417.5
    assert ben.performance_bonus == 300

    cara = engine.row(3)
    assert cara.full_attendance_bonus == 0
    assert cara.disqualification_reason == "late"
    assert cara.sunday_ot_pay == 900
    assert cara.performance_bonus == 0
    assert cara.meal_deduction == 120


def test_example_staff_with_clean_month():
    src = FakeSources(roster=[StaffMember(1, "Amy", "assistant", 30000, 2000)])
    engine = CompensationEngine(src)

    (row,) = asyncio.run(engine.recompute(1, "2025-03", CFG))

    assert row.full_attendance_bonus == 3000
    assert row.leave_deduction == 0
    assert row.net_pay == 35000
    assert row.attendance_summary == "full attendance"


def test_net_pay_matches_its_terms_for_random_inputs():
    rnd = random.Random(42)
    roles = ["consultant", "trainee", "assistant", "manager", "part_time"]

    async def run_all():
        for _ in range(50):
            n = rnd.randint(1, 8)
            roster = [
                StaffMember(i, f"S{i}", rnd.choice(roles), rnd.randint(20000, 60000),
                            rnd.choice([0, 1000, 2500]), rnd.randint(0, 2000))
                for i in range(n)
            ]
            src = FakeSources(
                roster=roster,
                stats={
                    s.id: AttendanceStats(
                        personal_leave_days=rnd.choice([0, 0, 0, 0.5, 1, 2]),
                        sick_leave_days=rnd.choice([0, 0, 0.5, 1, 3, 12]),
                        special_leave_days=rnd.choice([0, 1]),
                        late_count=rnd.choice([0, 0, 0, 1, 3]),
                        sunday_overtime_days=rnd.choice([0, 0, 0.5, 1, 2]),
                    )
                    for s in roster
                },
                ytd={s.id: rnd.choice([0, 4, 9.5, 10, 14]) for s in roster},
                revenue={
                    s.id: RevenueAttribution(rnd.randint(0, 300000), rnd.randint(0, 30000))
                    for s in roster
                },
                meals={s.id: rnd.randint(0, 500) for s in roster},
                pool_rate=rnd.randint(0, 100),
            )
            engine = CompensationEngine(src)
            rows = await engine.recompute(1, "2025-06", CFG)
            assert all(r.staff.role != "part_time" for r in rows)
            for r in rows:
                assert r.net_pay == _closed_form(r)
                assert r.full_attendance_bonus >= 0

            target = rnd.choice(rows) if rows else None
            if target is not None:
                updated = await engine.update_field(target.staff_id, "ot_minutes", rnd.randint(0, 600))
                assert updated.net_pay == _closed_form(updated)
                await engine.drain()

    asyncio.run(run_all())


def test_recompute_is_idempotent():
    src = _clinic()
    engine = CompensationEngine(src)

    async def twice():
        first = await engine.recompute(7, "2025-03", CFG)
        second = await engine.recompute(7, "2025-03", CFG)
        return first, second

    first, second = asyncio.run(twice())
    assert first == second


def test_override_survives_a_new_session():
    src = _clinic()

    async def edit():
        engine = CompensationEngine(src)
        await engine.recompute(7, "2025-03", CFG)
        row = await engine.update_field(1, "ot_minutes", 120)
        assert row.regular_ot_pay == 420
        assert await engine.drain() == []

    asyncio.run(edit())

    fresh = CompensationEngine(src)
    asyncio.run(fresh.recompute(7, "2025-03", CFG))
    row = fresh.row(1)
    assert row.regular_ot_minutes == 120
    assert row.regular_ot_pay == 420
    assert row.net_pay == _closed_form(row)


def test_update_field_only_touches_that_row():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        before = await engine.recompute(7, "2025-03", CFG)
        updated = await engine.update_field(2, "adjustment", "-500")
        await engine.drain()
        return before, updated

    before, updated = asyncio.run(go())
    assert updated.adjustment == -500
    assert updated.net_pay == before[1].net_pay - 500
    assert engine.row(1) == before[0]
    assert engine.row(3) == before[2]


def test_insurance_override_replaces_profile_value():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        await engine.recompute(7, "2025-03", CFG)
        await engine.update_field(1, "insurance", 800)
        await engine.drain()
        return await engine.recompute(7, "2025-03", CFG)

    rows = asyncio.run(go())
    assert rows[0].insurance == 800
    assert src.stored[(7, "2025-03", 1)] == {"labor_health_insurance": Decimal("800")}


def test_fetch_failure_leaves_previous_rows():
    src = _clinic()
    engine = CompensationEngine(src)
    before = asyncio.run(engine.recompute(7, "2025-03", CFG))

    src.fail.add("get_meal_deduction")
    with pytest.raises(CollaboratorFetchError) as ei:
        asyncio.run(engine.recompute(7, "2025-04", CFG))

    assert ei.value.failed == ("meal_deduction",)
    assert isinstance(ei.value.__cause__, RuntimeError)
    assert engine.rows == before
    assert engine.context == (7, "2025-03")


def test_ytd_failure_aborts_the_whole_recompute():
    src = _clinic()
    src.fail.add("get_ytd_sick_days")
    engine = CompensationEngine(src)

    with pytest.raises(CollaboratorFetchError) as ei:
        asyncio.run(engine.recompute(7, "2025-03", CFG))

    assert ei.value.failed == ("ytd_sick_days[1]", "ytd_sick_days[2]", "ytd_sick_days[3]")
    assert engine.rows == []
    assert engine.context is None


def test_failed_write_keeps_the_edit_and_is_reported():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        await engine.recompute(7, "2025-03", CFG)
        src.fail.add("save_override_field")
        row = await engine.update_field(3, "insurance", 650)
        failed = await engine.drain()
        return row, failed

    row, failed = asyncio.run(go())
    assert row.insurance == 650
    assert engine.row(3).insurance == 650
    assert failed == [(3, "labor_health_insurance")]
    assert src.stored == {}

    # the next full recompute reconciles from what was durably stored
    src.fail.clear()
    asyncio.run(engine.recompute(7, "2025-03", CFG))
    assert engine.row(3).insurance == 900


def test_recompute_keeps_edits_whose_write_is_still_in_flight():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        await engine.recompute(7, "2025-03", CFG)
        gate = asyncio.Event()
        src.gates[("save_override_field", None)] = gate
        await engine.update_field(1, "ot_minutes", 60)
        assert engine.pending_writes == 1

        rows = await engine.recompute(7, "2025-03", CFG)
        gate.set()
        await engine.drain()
        return rows

    rows = asyncio.run(go())
    assert rows[0].regular_ot_minutes == 60
    assert rows[0].regular_ot_pay == 210


def test_superseded_recompute_is_dropped():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        gate = asyncio.Event()
        src.gates[("get_attendance_stats", "2025-01")] = gate
        slow = asyncio.ensure_future(engine.recompute(7, "2025-01", CFG))
        await asyncio.sleep(0)

        await engine.recompute(7, "2025-02", CFG)
        gate.set()
        with pytest.raises(StaleRecomputeError):
            await slow

    asyncio.run(go())
    assert engine.context == (7, "2025-02")
    assert engine.generation == 2


def test_invalid_inputs_are_treated_as_zero():
    src = FakeSources(
        roster=[StaffMember(1, "Amy", "consultant", 30000, 2000)],
        stats={
            1: AttendanceStats(
                personal_leave_days=-2,
                sick_leave_days=float("nan"),
                special_leave_days=float("inf"),
                late_count=-1,
                sunday_overtime_days=float("-inf"),
            )
        },
        revenue={1: RevenueAttribution(self_pay_amount=float("nan"), retail_amount=-100)},
        meals={1: "n/a"},
        ytd={1: -5},
    )
    engine = CompensationEngine(src)

    (row,) = asyncio.run(engine.recompute(1, "2025-03", CFG))

    assert row.personal_leave_days == 0
    assert row.sick_leave_days == 0
    assert row.late_count == 0
    assert row.leave_deduction == 0
    assert row.full_attendance_bonus == 3000
    assert row.sunday_ot_pay == 0
    assert row.base_bonus == 0
    assert row.meal_deduction == 0
    assert row.net_pay == 35000


def test_garbage_edit_value_becomes_zero():
    src = _clinic()
    engine = CompensationEngine(src)

    async def go():
        await engine.recompute(7, "2025-03", CFG)
        row = await engine.update_field(1, "ot_minutes", "lots")
        await engine.drain()
        return row

    assert asyncio.run(go()).regular_ot_pay == 0


def test_update_field_errors():
    src = _clinic()
    engine = CompensationEngine(src)

    with pytest.raises(EngineNotReadyError):
        asyncio.run(engine.update_field(1, "ot_minutes", 10))

    async def go():
        await engine.recompute(7, "2025-03", CFG)
        with pytest.raises(UnknownFieldError):
            await engine.update_field(1, "base_salary", 10)
        with pytest.raises(UnknownStaffError):
            await engine.update_field(4, "ot_minutes", 10)  # part-timer, not on the sheet

    asyncio.run(go())
    assert engine.pending_writes == 0


def test_insurance_and_adjustment_are_used_as_entered():
    src = FakeSources(roster=[StaffMember(1, "Amy", "assistant", 30000, 2000, Decimal("1234.5"))])
    engine = CompensationEngine(src)

    async def go():
        first = (await engine.recompute(1, "2025-03", CFG))[0]
        adj = await engine.update_field(1, "adjustment", "100.4")
        ins = await engine.update_field(1, "insurance", "850.6")
        neg = await engine.update_field(1, "adjustment", "-2.5")
        await engine.drain()
        return first, adj, ins, neg

    first, adj, ins, neg = asyncio.run(go())

    assert first.insurance == Decimal("1234.5")
    assert first.net_pay == Decimal("35000") - Decimal("1234.5")

    assert adj.adjustment == Decimal("100.4")
    assert adj.net_pay == first.net_pay + Decimal("100.4")

    assert ins.insurance == Decimal("850.6")
    assert ins.net_pay == Decimal("35000") - Decimal("850.6") + Decimal("100.4")

    assert neg.adjustment == Decimal("-2.5")
    assert neg.net_pay == _closed_form(neg)

    # what the store holds is what the row shows
    assert src.stored[(1, "2025-03", 1)] == {
        "other_adjustment": Decimal("-2.5"),
        "labor_health_insurance": Decimal("850.6"),
    }
    fresh = CompensationEngine(src)
    (again,) = asyncio.run(fresh.recompute(1, "2025-03", CFG))
    assert again == neg
