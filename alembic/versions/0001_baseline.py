"""Baseline migration - provider and care seeker accounts

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-01

Creates the account tables. Provider rows carry the subscription columns
written by the Stripe webhook and read by the access check.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'providers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('business_name', sa.String(255), nullable=False),
        sa.Column('contact_email', sa.String(255), nullable=True),
        sa.Column('subscription_status', sa.String(20), nullable=True),
        sa.Column('subscription_plan_id', sa.String(64), nullable=True),
        sa.Column('subscription_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_providers_user_id', 'providers', ['user_id'], unique=True)
    op.create_index('ix_providers_stripe_customer_id', 'providers', ['stripe_customer_id'], unique=True)

    op.create_table(
        'care_seekers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_care_seekers_user_id', 'care_seekers', ['user_id'], unique=True)


def downgrade() -> None:
    op.drop_index('ix_care_seekers_user_id', table_name='care_seekers')
    op.drop_table('care_seekers')
    op.drop_index('ix_providers_stripe_customer_id', table_name='providers')
    op.drop_index('ix_providers_user_id', table_name='providers')
    op.drop_table('providers')
