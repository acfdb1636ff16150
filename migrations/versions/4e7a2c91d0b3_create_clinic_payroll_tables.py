"""create clinic payroll tables

Revision ID: 4e7a2c91d0b3
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e7a2c91d0b3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAFF_ROLES = ('consultant', 'trainee', 'assistant', 'manager', 'part_time')


def upgrade() -> None:
    op.create_table(
        'clinics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )

    op.create_table(
        'staff_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('role', sa.Enum(*STAFF_ROLES, name='staff_role_enum'), nullable=False),
        sa.Column('base_salary', sa.Numeric(12, 2), nullable=False),
        sa.Column('allowance', sa.Numeric(12, 2), nullable=False),
        sa.Column('monthly_insurance_cost', sa.Numeric(12, 2), nullable=False),
        sa.Column('onboard_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_staff_members_clinic_id', 'staff_members', ['clinic_id'])
    op.create_index('ix_staff_clinic_active', 'staff_members', ['clinic_id', 'is_active'])

    op.create_table(
        'staff_attendance_stats',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('personal_leave_days', sa.Float(), nullable=True),
        sa.Column('sick_leave_days', sa.Float(), nullable=True),
        sa.Column('special_leave_days', sa.Float(), nullable=True),
        sa.Column('late_count', sa.Integer(), nullable=True),
        sa.Column('sunday_overtime_days', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('staff_id', 'year', 'month', name='uq_staff_attendance_stats_month'),
    )
    op.create_index('ix_staff_attendance_stats_staff_id', 'staff_attendance_stats', ['staff_id'])
    op.create_index('ix_staff_attendance_stats_clinic_id', 'staff_attendance_stats', ['clinic_id'])
    op.create_index('ix_staff_attendance_stats_period', 'staff_attendance_stats', ['clinic_id', 'year', 'month'])

    op.create_table(
        'revenue_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('patient_label', sa.String(length=120), nullable=True),
        sa.Column('consultant_id', sa.Integer(), nullable=True),
        sa.Column('retail_staff_id', sa.Integer(), nullable=True),
        sa.Column('self_pay_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('retail_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['consultant_id'], ['staff_members.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['retail_staff_id'], ['staff_members.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_revenue_lines_clinic_date', 'revenue_lines', ['clinic_id', 'work_date'])

    op.create_table(
        'meal_charges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('charge_date', sa.Date(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_meal_charges_clinic_date', 'meal_charges', ['clinic_id', 'charge_date'])

    op.create_table(
        'bonus_pool_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('pool_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'period', name='uq_bonus_pool_clinic_period'),
    )

    op.create_table(
        'salary_overrides',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('regular_overtime_minutes', sa.Numeric(10, 2), nullable=True),
        sa.Column('labor_health_insurance', sa.Numeric(12, 2), nullable=True),
        sa.Column('other_adjustment', sa.Numeric(12, 2), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'period', 'staff_id', name='uq_salary_override_clinic_period_staff'),
    )


def downgrade() -> None:
    op.drop_table('salary_overrides')
    op.drop_table('bonus_pool_settings')
    op.drop_index('ix_meal_charges_clinic_date', table_name='meal_charges')
    op.drop_table('meal_charges')
    op.drop_index('ix_revenue_lines_clinic_date', table_name='revenue_lines')
    op.drop_table('revenue_lines')
    op.drop_index('ix_staff_attendance_stats_period', table_name='staff_attendance_stats')
    op.drop_index('ix_staff_attendance_stats_clinic_id', table_name='staff_attendance_stats')
    op.drop_index('ix_staff_attendance_stats_staff_id', table_name='staff_attendance_stats')
    op.drop_table('staff_attendance_stats')
    op.drop_index('ix_staff_clinic_active', table_name='staff_members')
    op.drop_index('ix_staff_members_clinic_id', table_name='staff_members')
    op.drop_table('staff_members')
    op.drop_table('clinics')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        op.execute('DROP TYPE IF EXISTS staff_role_enum')
