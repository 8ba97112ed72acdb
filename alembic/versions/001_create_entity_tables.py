"""Create entity tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates the entity store schema:
- entities
- entity_addresses (address -> entity reverse index)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'entities',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, server_default='Unknown'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('confidence_score', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        if_not_exists=True
    )
    op.create_index('ix_entities_name', 'entities', ['name'], if_not_exists=True)
    op.create_index('ix_entities_type', 'entities', ['type'], if_not_exists=True)

    op.create_table(
        'entity_addresses',
        sa.Column('address', sa.String(128), primary_key=True),
        sa.Column(
            'entity_id',
            sa.String(64),
            sa.ForeignKey('entities.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        if_not_exists=True
    )
    op.create_index('ix_entity_addresses_entity_id', 'entity_addresses', ['entity_id'], if_not_exists=True)


def downgrade() -> None:
    # Reverse index first (foreign key to entities)
    op.drop_index('ix_entity_addresses_entity_id', table_name='entity_addresses', if_exists=True)
    op.drop_table('entity_addresses', if_exists=True)
    op.drop_index('ix_entities_type', table_name='entities', if_exists=True)
    op.drop_index('ix_entities_name', table_name='entities', if_exists=True)
    op.drop_table('entities', if_exists=True)
