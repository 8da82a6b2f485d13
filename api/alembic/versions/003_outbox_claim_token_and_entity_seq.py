"""outbox_claim_token_and_entity_seq

Revision ID: 003
Revises: 002
Create Date: 2026-10-19 09:42:18.556031

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '003'
down_revision: Union[str, Sequence[str], None] = '002'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """claim_token del lease, is_replay y unicidad de entity_seq por entidad."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    columns = {c['name'] for c in inspector.get_columns('sync_outbox')}

    with op.batch_alter_table('sync_outbox') as batch_op:
        if 'claim_token' not in columns:
            batch_op.add_column(sa.Column('claim_token', sa.String(length=32), nullable=True))
        if 'is_replay' not in columns:
            batch_op.add_column(
                sa.Column('is_replay', sa.Boolean(), server_default=sa.false(), nullable=False)
            )

    # Las reinserciones anteriores a esta revisión comparten seq con su evento original
    op.execute(
        "UPDATE sync_outbox SET is_replay = true "
        "WHERE idempotency_key LIKE 'replay:%'"
    )

    indexes = {ix['name'] for ix in inspector.get_indexes('sync_outbox')}
    if 'uq_sync_outbox_entity_seq' not in indexes:
        op.create_index(
            'uq_sync_outbox_entity_seq',
            'sync_outbox',
            ['entity_type', 'entity_id', 'entity_seq'],
            unique=True,
            postgresql_where=sa.text('NOT is_replay'),
            sqlite_where=sa.text('is_replay = 0'),
        )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_sync_outbox_entity_seq', table_name='sync_outbox')
    with op.batch_alter_table('sync_outbox') as batch_op:
        batch_op.drop_column('is_replay')
        batch_op.drop_column('claim_token')
