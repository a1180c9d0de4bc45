"""add plaid deletion cooldowns

Revision ID: 8d4f2b6a1c93
Revises: 3c1e7a9d2b40
Create Date: 2026-10-17 09:41:27.503118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8d4f2b6a1c93'
down_revision: Union[str, Sequence[str], None] = '3c1e7a9d2b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('plaid_deletion_cooldowns',
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('last_deletion_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('user_id')
    )
    # Seed from the audit log so existing cooldowns carry over
    op.execute(
        "INSERT INTO plaid_deletion_cooldowns (user_id, last_deletion_at) "
        "SELECT user_id, MAX(deleted_at) FROM plaid_item_deletions GROUP BY user_id"
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('plaid_deletion_cooldowns')
