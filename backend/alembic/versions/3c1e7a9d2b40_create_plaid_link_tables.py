"""create plaid link tables

Revision ID: 3c1e7a9d2b40
Revises:
Create Date: 2026-10-12 14:03:51.218734

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1e7a9d2b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('plaid_items',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('item_id', sa.String(), nullable=False),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('institution_id', sa.String(), nullable=True),
    sa.Column('institution_name', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('error_code', sa.String(), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('last_webhook_at', sa.DateTime(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_plaid_items_item_id'), 'plaid_items', ['item_id'], unique=True)
    op.create_index(op.f('ix_plaid_items_user_id'), 'plaid_items', ['user_id'], unique=False)
    op.create_index('ix_plaid_items_status', 'plaid_items', ['status'], unique=False)

    op.create_table('plaid_link_sessions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('link_token', sa.String(), nullable=False),
    sa.Column('link_session_id', sa.String(), nullable=True),
    sa.Column('plaid_user_token', sa.String(), nullable=True),
    sa.Column('status', sa.String(), nullable=False),
    sa.Column('items_added', sa.Integer(), nullable=False),
    sa.Column('public_tokens', sa.JSON(), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_plaid_link_sessions_link_token'), 'plaid_link_sessions', ['link_token'], unique=True)
    op.create_index(op.f('ix_plaid_link_sessions_link_session_id'), 'plaid_link_sessions', ['link_session_id'], unique=False)
    op.create_index(op.f('ix_plaid_link_sessions_status'), 'plaid_link_sessions', ['status'], unique=False)
    op.create_index(op.f('ix_plaid_link_sessions_user_id'), 'plaid_link_sessions', ['user_id'], unique=False)

    op.create_table('plaid_item_deletions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('item_id', sa.String(), nullable=False),
    sa.Column('institution_id', sa.String(), nullable=True),
    sa.Column('institution_name', sa.String(), nullable=True),
    sa.Column('deleted_at', sa.DateTime(), nullable=False),
    sa.Column('reason', sa.String(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_plaid_item_deletions_user_id_deleted_at', 'plaid_item_deletions', ['user_id', 'deleted_at'], unique=False)

    op.create_table('plaid_webhooks',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('item_id', sa.String(), nullable=True),
    sa.Column('user_id', sa.String(), nullable=True),
    sa.Column('webhook_type', sa.String(), nullable=False),
    sa.Column('webhook_code', sa.String(), nullable=False),
    sa.Column('error_code', sa.String(), nullable=True),
    sa.Column('payload', sa.JSON(), nullable=True),
    sa.Column('processed', sa.Boolean(), nullable=False),
    sa.Column('processing_error', sa.Text(), nullable=True),
    sa.Column('received_at', sa.DateTime(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_plaid_webhooks_item_id'), 'plaid_webhooks', ['item_id'], unique=False)
    op.create_index('ix_plaid_webhooks_type_code_item', 'plaid_webhooks', ['webhook_type', 'webhook_code', 'item_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_plaid_webhooks_type_code_item', table_name='plaid_webhooks')
    op.drop_index(op.f('ix_plaid_webhooks_item_id'), table_name='plaid_webhooks')
    op.drop_table('plaid_webhooks')
    op.drop_index('ix_plaid_item_deletions_user_id_deleted_at', table_name='plaid_item_deletions')
    op.drop_table('plaid_item_deletions')
    op.drop_index(op.f('ix_plaid_link_sessions_user_id'), table_name='plaid_link_sessions')
    op.drop_index(op.f('ix_plaid_link_sessions_status'), table_name='plaid_link_sessions')
    op.drop_index(op.f('ix_plaid_link_sessions_link_session_id'), table_name='plaid_link_sessions')
    op.drop_index(op.f('ix_plaid_link_sessions_link_token'), table_name='plaid_link_sessions')
    op.drop_table('plaid_link_sessions')
    op.drop_index('ix_plaid_items_status', table_name='plaid_items')
    op.drop_index(op.f('ix_plaid_items_user_id'), table_name='plaid_items')
    op.drop_index(op.f('ix_plaid_items_item_id'), table_name='plaid_items')
    op.drop_table('plaid_items')
