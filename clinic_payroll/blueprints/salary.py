from __future__ import annotations

from decimal import Decimal
from typing import Optional

from flask import Blueprint, current_app, request

from clinic_payroll.common.errors import APIError
from clinic_payroll.common.http import ok
from clinic_payroll.services.compensation_engine import CompensationEngine
from clinic_payroll.services.payroll_sources import SqlPayrollSources
from clinic_payroll.services.salary_types import PayrollRunConfig, parse_period

bp = Blueprint("salary", __name__, url_prefix="/api/v1/salary")


# ---------- helpers ----------
def _dec(x) -> Optional[Decimal]:
    if x is None or x == "": return None
    try:
        d = Decimal(str(x))
    except Exception:
        return None
    return d if d.is_finite() else None

def _invalid(message, **errors):
    return APIError("VALIDATION_ERROR", message, status_code=422, payload=errors or None)

def _sources() -> SqlPayrollSources:
    ext = current_app.extensions
    if "salary_sources" not in ext:
        ext["salary_sources"] = SqlPayrollSources(default_pool_rate=current_app.config["PAYROLL_DEFAULT_POOL_RATE"])
    return ext["salary_sources"]

def _engine() -> CompensationEngine:
    """Fresh engine per request: each async view runs on its own event loop, so engines are never shared."""
    return CompensationEngine(_sources())

def _run_config() -> PayrollRunConfig:
    cfg = current_app.config
    base = _dec(request.args.get("attendance_bonus_base"))
    rate = _dec(request.args.get("ot_rate"))
    return PayrollRunConfig(
        attendance_bonus_base=base if base is not None else cfg["PAYROLL_ATTENDANCE_BONUS_BASE"],
        per_minute_ot_rate=rate if rate is not None else cfg["PAYROLL_OT_RATE_PER_MINUTE"],
    )

def _check_month(month: str) -> None:
    try:
        parse_period(month)
    except ValueError as e:
        raise _invalid("Invalid month", month=str(e))


# ---------- salary sheet ----------
@bp.get("/<int:clinic_id>/<month>")
async def salary_sheet(clinic_id: int, month: str):
    _check_month(month)

    engine = _engine()
    rows = await engine.recompute(clinic_id, month, _run_config())
    pool = engine.bonus_pool

    data = {
        "rows": [r.to_dict() for r in rows],
        "totals": {
            "staff": len(rows),
            "net_pay": float(sum(r.net_pay for r in rows)),
            "performance_bonus": sum(r.performance_bonus for r in rows),
            "leave_deduction": sum(r.leave_deduction for r in rows),
        },
        "bonus_pool": {
            "pool_rate": float(pool.pool_rate),
            "pool_total": pool.pool_total,
            "eligible_count": pool.eligible_count,
            "share": pool.share,
        },
    }
    return ok(data, clinic_id=clinic_id, month=month)


@bp.patch("/<int:clinic_id>/<month>/staff/<int:staff_id>")
async def update_salary_field(clinic_id: int, month: str, staff_id: int):
    _check_month(month)

    j = request.get_json(silent=True) or {}
    field = (j.get("field") or "").strip()
    if not field or "value" not in j:
        raise _invalid("field and value required", field="required", value="required")

    engine = _engine()
    await engine.recompute(clinic_id, month, _run_config())
    row = await engine.update_field(staff_id, field, j.get("value"))
    failed = await engine.drain()
    return ok(row.to_dict(), persisted=not failed)


# ---------- bonus pool ----------
@bp.get("/<int:clinic_id>/<month>/bonus-pool")
async def bonus_pool_breakdown(clinic_id: int, month: str):
    _check_month(month)

    engine = _engine()
    await engine.recompute(clinic_id, month, _run_config())
    return ok(engine.bonus_pool.to_dict(), clinic_id=clinic_id, month=month)


@bp.put("/<int:clinic_id>/<month>/bonus-pool")
def set_bonus_pool_rate(clinic_id: int, month: str):
    _check_month(month)

    j = request.get_json(silent=True) or {}
    rate = _dec(j.get("pool_rate"))
    if rate is None:
        raise _invalid("pool_rate required", pool_rate="must be a number")

    stored = _sources().set_bonus_pool_rate(clinic_id, month, rate)
    return ok({"clinic_id": clinic_id, "month": month, "pool_rate": float(stored)})
