"""create_sync_engine_tables

Revision ID: 001
Revises:
Create Date: 2026-03-02 10:12:44.301557

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSONB = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Outbox, mapa de IDs, inbox y dead letter."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('sync_outbox'):
        op.create_table('sync_outbox',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(length=16), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=255), nullable=False),
        sa.Column('payload', JSONB, nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('entity_seq', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('locked_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key')
        )
        op.create_index('ix_sync_outbox_claim', 'sync_outbox', ['status', 'next_attempt_at'], unique=False)
        op.create_index('ix_sync_outbox_priority', 'sync_outbox', ['priority', 'id'], unique=False)
        op.create_index('ix_sync_outbox_entity', 'sync_outbox', ['entity_type', 'entity_id'], unique=False)

    if not inspector.has_table('airtable_id_map'):
        op.create_table('airtable_id_map',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('postgres_id', sa.String(length=255), nullable=False),
        sa.Column('airtable_record_id', sa.String(length=32), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_applied_seq', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entity_type', 'postgres_id', name='uq_airtable_id_map_entity')
        )
        op.create_index('ix_airtable_id_map_reverse', 'airtable_id_map', ['entity_type', 'airtable_record_id'], unique=False)

    if not inspector.has_table('sync_inbox_events'):
        op.create_table('sync_inbox_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'event_id', name='uq_sync_inbox_source_event')
        )

    if not inspector.has_table('sync_dead_letter'):
        op.create_table('sync_dead_letter',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('outbox_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=16), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=255), nullable=False),
        sa.Column('payload', JSONB, nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('entity_seq', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('dead_lettered_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('replayed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('replay_outbox_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_dead_letter_outbox_id'), 'sync_dead_letter', ['outbox_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table in ('sync_dead_letter', 'sync_inbox_events', 'airtable_id_map', 'sync_outbox'):
        if inspector.has_table(table):
            op.drop_table(table)
