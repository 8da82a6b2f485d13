"""create_airtable_mirror_tables

Revision ID: 002
Revises: 001
Create Date: 2026-03-02 10:31:07.914210

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, Sequence[str], None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSONB = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

REFERENCE_TABLES = (
    'reference_methods',
    'reference_goals',
    'reference_days',
    'reference_overtuigingen',
    'reference_mindset_categories',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    """Espejo relacional de las tablas de Airtable."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('users'):
        op.create_table('users',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('role', sa.String(length=64), nullable=True),
        sa.Column('language_code', sa.String(length=16), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('last_login', sa.String(length=64), nullable=True),
        sa.Column('bonus_points', sa.Integer(), nullable=True),
        sa.Column('badges', sa.Text(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    for table in REFERENCE_TABLES:
        if not inspector.has_table(table):
            op.create_table(table,
            sa.Column('id', sa.String(length=32), nullable=False),
            sa.Column('payload', JSONB, nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
            sa.PrimaryKeyConstraint('id')
            )

    if not inspector.has_table('translations'):
        op.create_table('translations',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('nl', sa.Text(), nullable=False, server_default=''),
        sa.Column('fr', sa.Text(), nullable=True),
        sa.Column('en', sa.Text(), nullable=True),
        sa.Column('context', sa.Text(), nullable=True),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('key')
        )

    if not inspector.has_table('personal_goals'):
        op.create_table('personal_goals',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('schedule_days', JSONB, nullable=True),
        sa.Column('status', sa.String(length=64), nullable=False, server_default='Actief'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id')
        )
        op.create_index(op.f('ix_personal_goals_user_id'), 'personal_goals', ['user_id'], unique=False)

    if not inspector.has_table('programs'):
        op.create_table('programs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('duration', sa.String(length=64), nullable=False, server_default='4 weken'),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(length=64), nullable=True),
        sa.Column('creation_type', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('goals', JSONB, nullable=False),
        sa.Column('methods', JSONB, nullable=False),
        sa.Column('days_of_week', JSONB, nullable=False),
        sa.Column('overtuigingen', JSONB, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id')
        )
        op.create_index(op.f('ix_programs_user_id'), 'programs', ['user_id'], unique=False)

    if not inspector.has_table('program_schedule'):
        op.create_table('program_schedule',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('program_id', sa.String(length=36), nullable=False),
        sa.Column('planning_id', sa.String(length=255), nullable=True),
        sa.Column('session_date', sa.Date(), nullable=True),
        sa.Column('day_of_week_id', sa.String(length=32), nullable=True),
        sa.Column('session_description', sa.Text(), nullable=True),
        sa.Column('method_ids', JSONB, nullable=False),
        sa.Column('goal_ids', JSONB, nullable=False),
        sa.Column('method_usage_ids', JSONB, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id')
        )
        op.create_index(op.f('ix_program_schedule_program_id'), 'program_schedule', ['program_id'], unique=False)

    if not inspector.has_table('method_usage'):
        op.create_table('method_usage',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('method_id', sa.String(length=32), nullable=False),
        sa.Column('program_id', sa.String(length=36), nullable=True),
        sa.Column('program_schedule_id', sa.String(length=36), nullable=True),
        sa.Column('remark', sa.Text(), nullable=True),
        sa.Column('used_at', sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id')
        )
        op.create_index(op.f('ix_method_usage_user_id'), 'method_usage', ['user_id'], unique=False)
        op.create_index(op.f('ix_method_usage_program_schedule_id'), 'method_usage', ['program_schedule_id'], unique=False)

    if not inspector.has_table('habit_usage'):
        op.create_table('habit_usage',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('method_id', sa.String(length=32), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id'),
        sa.UniqueConstraint('user_id', 'method_id', 'usage_date', name='uq_habit_usage_user_method_date')
        )

    if not inspector.has_table('personal_goal_usage'):
        op.create_table('personal_goal_usage',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('personal_goal_id', sa.String(length=36), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id')
        )
        op.create_index(op.f('ix_personal_goal_usage_user_id'), 'personal_goal_usage', ['user_id'], unique=False)

    if not inspector.has_table('overtuiging_usage'):
        op.create_table('overtuiging_usage',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=True),
        sa.Column('user_id', sa.String(length=32), nullable=False),
        sa.Column('overtuiging_id', sa.String(length=32), nullable=False),
        sa.Column('program_id', sa.String(length=36), nullable=True),
        sa.Column('usage_date', sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('airtable_record_id'),
        sa.UniqueConstraint('user_id', 'overtuiging_id', name='uq_overtuiging_usage_user_overtuiging')
        )


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    tables = (
        'overtuiging_usage',
        'personal_goal_usage',
        'habit_usage',
        'method_usage',
        'program_schedule',
        'programs',
        'personal_goals',
        'translations',
        *REFERENCE_TABLES,
        'users',
    )
    for table in tables:
        if inspector.has_table(table):
            op.drop_table(table)
