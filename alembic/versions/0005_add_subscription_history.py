"""add subscription_history table

Revision ID: 0005_add_subscription_history
Revises: 0004_key_digest_message_sequence
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0005_add_subscription_history'
down_revision: Union[str, None] = '0004_key_digest_message_sequence'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'subscription_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('provider_id', sa.Uuid(), nullable=False),
        sa.Column('plan_id', sa.String(64), nullable=True),
        sa.Column('amount_cents', sa.Integer(), server_default='0', nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('payment_method', sa.String(20), server_default='stripe', nullable=False),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_subscription_history_provider_id',
        'subscription_history',
        ['provider_id'],
    )


def downgrade() -> None:
    op.drop_index('ix_subscription_history_provider_id', table_name='subscription_history')
    op.drop_table('subscription_history')
