"""Hash conversation keys and number messages per conversation

Revision ID: 0004_key_digest_message_sequence
Revises: 0003_add_processed_webhook_events
Create Date: 2026-10-18

conversation_key becomes the sha256 of the JSON-encoded key fields; the
old provider|email|booking text could collide when a field contained "|".
messages.sequence records insertion order within a conversation.
"""
import hashlib
import json
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0004_key_digest_message_sequence'
down_revision: Union[str, None] = '0003_add_processed_webhook_events'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


conversations = sa.table(
    'conversations',
    sa.column('id', sa.Uuid()),
    sa.column('provider_id', sa.String()),
    sa.column('customer_email', sa.String()),
    sa.column('booking_id', sa.String()),
    sa.column('conversation_key', sa.String()),
)

messages = sa.table(
    'messages',
    sa.column('id', sa.Uuid()),
    sa.column('conversation_id', sa.Uuid()),
    sa.column('created_at', sa.DateTime(timezone=True)),
    sa.column('sequence', sa.BigInteger()),
)


def _digest(provider_id, customer_email, booking_id) -> str:
    encoded = json.dumps([provider_id, customer_email, booking_id])
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def upgrade() -> None:
    bind = op.get_bind()

    for row in bind.execute(sa.select(
        conversations.c.id,
        conversations.c.provider_id,
        conversations.c.customer_email,
        conversations.c.booking_id,
    )).all():
        bind.execute(
            conversations.update()
            .where(conversations.c.id == row.id)
            .values(conversation_key=_digest(row.provider_id, row.customer_email, row.booking_id))
        )

    with op.batch_alter_table('conversations') as batch_op:
        batch_op.alter_column(
            'conversation_key',
            existing_type=sa.String(400),
            type_=sa.String(64),
            existing_nullable=False,
        )

    op.add_column('messages', sa.Column('sequence', sa.BigInteger(), nullable=True))

    # Existing history keeps its timestamp order
    position = {}
    for row in bind.execute(
        sa.select(messages.c.id, messages.c.conversation_id)
        .order_by(messages.c.conversation_id, messages.c.created_at, messages.c.id)
    ).all():
        position[row.conversation_id] = position.get(row.conversation_id, 0) + 1
        bind.execute(
            messages.update()
            .where(messages.c.id == row.id)
            .values(sequence=position[row.conversation_id])
        )

    with op.batch_alter_table('messages') as batch_op:
        batch_op.alter_column('sequence', existing_type=sa.BigInteger(), nullable=False)
        batch_op.create_unique_constraint(
            'uq_messages_conversation_sequence',
            ['conversation_id', 'sequence'],
        )


def downgrade() -> None:
    with op.batch_alter_table('messages') as batch_op:
        batch_op.drop_constraint('uq_messages_conversation_sequence', type_='unique')
        batch_op.drop_column('sequence')

    bind = op.get_bind()
    with op.batch_alter_table('conversations') as batch_op:
        batch_op.alter_column(
            'conversation_key',
            existing_type=sa.String(64),
            type_=sa.String(400),
            existing_nullable=False,
        )

    for row in bind.execute(sa.select(
        conversations.c.id,
        conversations.c.provider_id,
        conversations.c.customer_email,
        conversations.c.booking_id,
    )).all():
        bind.execute(
            conversations.update()
            .where(conversations.c.id == row.id)
            .values(conversation_key=f"{row.provider_id}|{row.customer_email}|{row.booking_id or ''}")
        )
