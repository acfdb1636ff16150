import asyncio
import os
from datetime import date
from decimal import Decimal

import click
from flask import Flask
from flask_cors import CORS

from clinic_payroll.extensions import db, migrate, init_db
from clinic_payroll.models import load_all


def create_app(config_object: str | None = None):
    app = Flask(__name__)

    # Basic inline config (defaults)
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL", "sqlite:///clinic_payroll.db")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Salary sheet defaults; each request may still pass its own values
    app.config["PAYROLL_ATTENDANCE_BONUS_BASE"] = Decimal(os.getenv("PAYROLL_ATTENDANCE_BONUS_BASE", "3000"))
    app.config["PAYROLL_OT_RATE_PER_MINUTE"] = Decimal(os.getenv("PAYROLL_OT_RATE_PER_MINUTE", "3.5"))
    app.config["PAYROLL_DEFAULT_POOL_RATE"] = Decimal(os.getenv("PAYROLL_DEFAULT_POOL_RATE", "30"))

    # Try loading external config, but don't crash if missing
    if config_object:
        try:
            app.config.from_object(config_object)
        except Exception as e:
            app.logger.warning("Could not import config object %r: %s", config_object, e)

    # CORS (dev)
    CORS(app, resources={r"/api/*": {"origins": "*"}})

    # Extensions
    init_db(app)
    migrate.init_app(app, db)

    # Ensure models are loaded so metadata is complete
    with app.app_context():
        load_all()

    # Expose `flask db ...`
    try:
        from flask_migrate.cli import db as migrate_db_group
        app.cli.add_command(migrate_db_group)
    except ImportError:
        app.logger.warning("flask_migrate CLI unavailable; `flask db` commands not registered")

    # Blueprints
    from clinic_payroll.common.errors import bp_errors
    from clinic_payroll.blueprints.health import bp as health_bp
    from clinic_payroll.blueprints.salary import bp as salary_bp

    app.register_blueprint(bp_errors)
    app.register_blueprint(health_bp)
    app.register_blueprint(salary_bp)

    # ----------------- CLI COMMANDS -----------------

    @app.cli.group("salary")
    def salary_group():
        """Monthly salary sheet utilities."""
        pass

    @salary_group.command("recompute")
    @click.option("--clinic-id", "clinic_id", type=int, required=True, help="Clinic ID")
    @click.option("--month", required=True, help="Period as YYYY-MM")
    @click.option("--attendance-bonus-base", type=float, default=None, help="Full-attendance bonus amount")
    @click.option("--ot-rate", type=float, default=None, help="Regular overtime pay per minute")
    def salary_recompute(clinic_id: int, month: str, attendance_bonus_base, ot_rate):
        """Compute the salary sheet for a clinic month and print it."""
        from clinic_payroll.services.compensation_engine import CompensationEngine, CompensationError
        from clinic_payroll.services.payroll_sources import SqlPayrollSources
        from clinic_payroll.services.salary_types import PayrollRunConfig

        cfg = PayrollRunConfig(
            attendance_bonus_base=(
                Decimal(str(attendance_bonus_base)) if attendance_bonus_base is not None
                else app.config["PAYROLL_ATTENDANCE_BONUS_BASE"]
            ),
            per_minute_ot_rate=(
                Decimal(str(ot_rate)) if ot_rate is not None
                else app.config["PAYROLL_OT_RATE_PER_MINUTE"]
            ),
        )
        engine = CompensationEngine(SqlPayrollSources(default_pool_rate=app.config["PAYROLL_DEFAULT_POOL_RATE"]))
        try:
            rows = asyncio.run(engine.recompute(clinic_id, month, cfg))
        except (CompensationError, ValueError) as e:
            raise click.ClickException(str(e))

        for r in rows:
            notes = list(r.disqualification_reasons) + [f"reduced: {n}" for n in r.bonus_notes]
            note = f"  [{', '.join(notes)}]" if notes else ""
            click.echo(
                f"{r.staff.name:<16} {r.staff.role:<11} base={r.total_base:>7} "
                f"leave=-{r.leave_deduction:<6} attend=+{r.full_attendance_bonus:<5} "
                f"ot=+{r.sunday_ot_pay + r.regular_ot_pay:<6} perf=+{r.performance_bonus:<6} "
                f"net={r.net_pay:>7}{note}"
            )
        pool = engine.bonus_pool
        click.echo(
            f"pool rate={pool.pool_rate}% total={pool.pool_total} share={pool.share} x{pool.eligible_count}"
        )
        click.echo(f"Total net pay: {sum(r.net_pay for r in rows)} ({len(rows)} staff)")

    @salary_group.command("seed-demo")
    @click.option("--month", default=None, help="Period as YYYY-MM (default: current month)")
    def salary_seed_demo(month):
        """Create a DEMO clinic with a small roster, attendance and ledger rows."""
        from clinic_payroll.models.attendance import StaffAttendanceStats
        from clinic_payroll.models.ledger import MealCharge, RevenueLine
        from clinic_payroll.models.staff import Clinic, StaffMember
        from clinic_payroll.services.salary_types import parse_period

        month = month or date.today().strftime("%Y-%m")
        year, mon = parse_period(month)

        c = Clinic.query.filter_by(code="DEMO").first()
        if not c:
            c = Clinic(code="DEMO", name="Demo Dental")
            db.session.add(c)
            db.session.commit()

        roster = [
            ("Amy", "consultant", 32000, 2000, 1200),
            ("Ben", "consultant", 30000, 2000, 1100),
            ("Cara", "assistant", 29000, 1000, 1000),
            ("Dan", "trainee", 27500, 0, 900),
            ("Eve", "part_time", 0, 0, 0),
        ]
        staff = {}
        for name, role, base, allowance, ins in roster:
            s = StaffMember.query.filter_by(clinic_id=c.id, name=name).first()
            if not s:
                s = StaffMember(clinic_id=c.id, name=name, role=role, base_salary=base,
                                allowance=allowance, monthly_insurance_cost=ins)
                db.session.add(s)
                db.session.flush()
            staff[name] = s

        stats = {"Ben": dict(sick_leave_days=1.5), "Cara": dict(late_count=2), "Dan": dict(sunday_overtime_days=1)}
        for name, kw in stats.items():
            sid = staff[name].id
            if not StaffAttendanceStats.query.filter_by(staff_id=sid, year=year, month=mon).first():
                db.session.add(StaffAttendanceStats(staff_id=sid, clinic_id=c.id, year=year, month=mon, **kw))

        if not RevenueLine.query.filter_by(clinic_id=c.id, work_date=date(year, mon, 1)).first():
            db.session.add_all([
                RevenueLine(clinic_id=c.id, work_date=date(year, mon, 1), patient_label="P-001",
                            consultant_id=staff["Amy"].id, self_pay_amount=100000, retail_amount=10000),
                RevenueLine(clinic_id=c.id, work_date=date(year, mon, 2), patient_label="P-002",
                            consultant_id=staff["Ben"].id, retail_staff_id=staff["Cara"].id,
                            self_pay_amount=40000, retail_amount=3000),
            ])
            db.session.add(MealCharge(clinic_id=c.id, staff_id=staff["Cara"].id,
                                      charge_date=date(year, mon, 3), amount=120, note="lunch"))
        db.session.commit()
        click.echo(f"Seeded DEMO clinic (id={c.id}) for {month}")

    return app
