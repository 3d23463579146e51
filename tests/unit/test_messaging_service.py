"""
Tests for MessagingService against a real SQLite store.

Covers lookup-or-create, concurrent creation, message acceptance,
read receipts, fan-out to subscribers and the support inbox.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from careconnect.domain.messaging import (
    Conversation,
    ConversationStatus,
    SenderType,
)
from careconnect.infrastructure.db.database import build_engine, build_session_factory
from careconnect.infrastructure.db.messaging_service import MessagingService
from careconnect.infrastructure.db.models import (
    Conversation as ConversationModel,
    Message as MessageModel,
)
from careconnect.infrastructure.db.repositories import ConversationRepository
from careconnect.infrastructure.exceptions import (
    ConversationClosedError,
    DuplicateError,
    InvalidInputError,
    NotFoundError,
    StoreUnavailableError,
)
from careconnect.infrastructure.realtime.change_feed import ConversationChangeFeed

from tests.conftest import CUSTOMER_EMAIL, CUSTOMER_ID, PROVIDER_ID, SUPPORT_ID


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# =============================================================================
# initialize
# =============================================================================

class TestInitialize:

    async def test_creates_conversation_with_welcome_message(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        assert conversation.provider_id == PROVIDER_ID
        assert conversation.customer_email == CUSTOMER_EMAIL
        assert conversation.booking_id is None
        assert conversation.status == ConversationStatus.ACTIVE

        messages = await messaging_service.list_messages(conversation.id)
        assert len(messages) == 1
        assert messages[0].sender_type == SenderType.SUPPORT
        assert messages[0].sender_id == SUPPORT_ID
        assert messages[0].content == f"Hello {CUSTOMER_EMAIL}! How can we help?"

    async def test_second_call_returns_same_conversation(self, messaging_service):
        first = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        second = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        assert second.id == first.id
        assert len(await messaging_service.list_messages(first.id)) == 1

    async def test_key_whitespace_is_ignored(self, messaging_service):
        first = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL, booking_id="  ")
        second = await messaging_service.initialize(f" {PROVIDER_ID} ", f"  {CUSTOMER_EMAIL}\n")

        assert second.id == first.id
        assert first.booking_id is None

    async def test_booking_id_is_part_of_the_key(self, messaging_service):
        general = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        booking = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL, booking_id="bk-1")

        assert booking.id != general.id
        assert booking.booking_id == "bk-1"

    async def test_separator_characters_do_not_merge_keys(self, messaging_service, session_factory):
        first = await messaging_service.initialize("prov", "a@b.com", booking_id="a@b.com|bk")
        second = await messaging_service.initialize("prov|a@b.com", "a@b.com", booking_id="bk")

        assert second.id != first.id
        assert second.provider_id == "prov|a@b.com"
        assert await count_rows(session_factory, ConversationModel) == 2

    @pytest.mark.parametrize("provider_id,email", [
        ("", CUSTOMER_EMAIL),
        ("   ", CUSTOMER_EMAIL),
        (PROVIDER_ID, ""),
        (PROVIDER_ID, "not-an-email"),
    ])
    async def test_rejects_malformed_key(self, messaging_service, session_factory, provider_id, email):
        with pytest.raises(InvalidInputError):
            await messaging_service.initialize(provider_id, email)

        assert await count_rows(session_factory, ConversationModel) == 0

    async def test_parallel_initialize_creates_one_conversation(self, messaging_service, session_factory):
        results = await asyncio.gather(*[
            messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
            for _ in range(8)
        ])

        assert len({c.id for c in results}) == 1
        assert await count_rows(session_factory, ConversationModel) == 1
        assert await count_rows(session_factory, MessageModel) == 1

    async def test_lost_race_reuses_winner(self):
        now = datetime.now(timezone.utc)
        winner = Conversation(
            id="winner-id",
            provider_id=PROVIDER_ID,
            customer_email=CUSTOMER_EMAIL,
            created_at=now,
            updated_at=now,
        )
        store = AsyncMock()
        store.find_by_key.side_effect = [None, winner]
        store.create_with_welcome.side_effect = DuplicateError("duplicate key")
        service = MessagingService(store, ConversationChangeFeed(), support_sender_id=SUPPORT_ID)

        result = await service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        assert result.id == "winner-id"
        assert store.create_with_welcome.await_count == 1

    async def test_unreachable_store_is_retryable(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")
        service = MessagingService(
            ConversationRepository(build_session_factory(engine)),
            ConversationChangeFeed(),
            support_sender_id=SUPPORT_ID,
        )

        with pytest.raises(StoreUnavailableError) as exc_info:
            await service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        assert exc_info.value.retryable is True
        assert exc_info.value.to_dict()["retryable"] is True
        await engine.dispose()


# =============================================================================
# send
# =============================================================================

class TestSend:

    async def test_send_stores_trimmed_message(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        message = await messaging_service.send(
            conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "  Do you have openings?  "
        )

        assert message.content == "Do you have openings?"
        assert message.is_read is False
        assert message.is_flagged is False
        assert message.conversation_id == conversation.id
        history = await messaging_service.list_messages(conversation.id)
        assert [m.id for m in history][-1] == message.id

    async def test_whitespace_content_is_rejected(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        with pytest.raises(InvalidInputError):
            await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "   ")

        assert len(await messaging_service.list_messages(conversation.id)) == 1

    async def test_unknown_sender_type_is_rejected(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        with pytest.raises(InvalidInputError):
            await messaging_service.send(conversation.id, "provider", CUSTOMER_ID, "hello")

    @pytest.mark.parametrize("conversation_id", [
        "00000000-0000-0000-0000-000000000000",
        "not-a-uuid",
    ])
    async def test_unknown_conversation(self, messaging_service, conversation_id):
        with pytest.raises(NotFoundError):
            await messaging_service.send(conversation_id, SenderType.CUSTOMER, CUSTOMER_ID, "hello")

    async def test_closed_conversation_rejects_messages(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        await messaging_service.close_conversation(conversation.id)

        with pytest.raises(ConversationClosedError):
            await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "hello?")

        assert len(await messaging_service.list_messages(conversation.id)) == 1

    async def test_send_bumps_conversation_updated_at(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "hello")

        refreshed = await messaging_service.get_conversation(conversation.id)
        assert refreshed.updated_at >= conversation.updated_at

    async def test_timestamps_are_utc_on_write_and_read(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        sent = await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "hello")

        stored = (await messaging_service.list_messages(conversation.id))[-1]
        reread = await messaging_service.get_conversation(conversation.id)

        assert sent.created_at.utcoffset() == timedelta(0)
        assert stored.created_at.utcoffset() == timedelta(0)
        assert stored.created_at == sent.created_at
        assert reread.created_at.utcoffset() == timedelta(0)
        assert stored.model_dump_json() == sent.model_dump_json()

    async def test_identical_timestamps_keep_insertion_order(self, messaging_service, monkeypatch):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        frozen = datetime(2026, 1, 1, tzinfo=timezone.utc)
        monkeypatch.setattr(
            "careconnect.infrastructure.db.repositories.conversation_repository.utcnow",
            lambda: frozen,
        )

        sent = [
            await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, f"msg {i}")
            for i in range(6)
        ]

        stored = (await messaging_service.list_messages(conversation.id))[1:]
        assert [m.id for m in stored] == [m.id for m in sent]
        summaries = await messaging_service.list_inbox()
        assert summaries[0].last_message.id == sent[-1].id

    async def test_concurrent_sends_publish_in_acceptance_order(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        stream = await messaging_service.stream(conversation.id)

        sent = await asyncio.gather(*[
            messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, f"msg {i}")
            for i in range(5)
        ])
        received = [await stream.get(timeout=1) for _ in range(5)]
        stored = (await messaging_service.list_messages(conversation.id))[1:]

        assert {m.id for m in received} == {m.id for m in sent}
        assert [m.id for m in received] == [m.id for m in stored]
        stream.unsubscribe()


# =============================================================================
# subscribe / stream
# =============================================================================

class TestSubscriptions:

    async def test_every_subscriber_receives_each_message_once(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        seen_a, seen_b = [], []
        sub_a = await messaging_service.subscribe(conversation.id, lambda m: seen_a.append(m.id))
        sub_b = await messaging_service.subscribe(conversation.id, lambda m: seen_b.append(m.id))

        first = await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "one")
        second = await messaging_service.send(conversation.id, SenderType.SUPPORT, SUPPORT_ID, "two")
        await asyncio.sleep(0.05)

        assert seen_a == [first.id, second.id]
        assert seen_b == [first.id, second.id]
        sub_a.unsubscribe()
        sub_b.unsubscribe()

    async def test_unsubscribed_callback_stops_receiving(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        seen_gone, seen_kept = [], []
        gone = await messaging_service.subscribe(conversation.id, lambda m: seen_gone.append(m.id))
        kept = await messaging_service.subscribe(conversation.id, lambda m: seen_kept.append(m.id))

        gone.unsubscribe()
        gone.unsubscribe()
        message = await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "still there?")
        await asyncio.sleep(0.05)

        assert seen_gone == []
        assert seen_kept == [message.id]
        kept.unsubscribe()

    async def test_stream_yields_new_messages(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        stream = await messaging_service.stream(conversation.id)

        message = await messaging_service.send(conversation.id, SenderType.SUPPORT, SUPPORT_ID, "hi there")

        received = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert received.id == message.id
        await stream.aclose()
        assert stream.closed


# =============================================================================
# mark_read
# =============================================================================

class TestMarkRead:

    async def test_marks_only_other_party_messages(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        welcome = (await messaging_service.list_messages(conversation.id))[0]
        own = await messaging_service.send(conversation.id, SenderType.CUSTOMER, CUSTOMER_ID, "mine")

        updated = await messaging_service.mark_read([welcome.id, own.id, "bogus"], SenderType.CUSTOMER)

        assert updated == 1
        by_id = {m.id: m for m in await messaging_service.list_messages(conversation.id)}
        assert by_id[welcome.id].is_read is True
        assert by_id[own.id].is_read is False

    async def test_is_idempotent(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        welcome = (await messaging_service.list_messages(conversation.id))[0]

        assert await messaging_service.mark_read([welcome.id], SenderType.CUSTOMER) == 1
        assert await messaging_service.mark_read([welcome.id], SenderType.CUSTOMER) == 0

    async def test_empty_ids(self, messaging_service):
        assert await messaging_service.mark_read([], SenderType.SUPPORT) == 0

    async def test_scoped_to_conversation(self, messaging_service):
        mine = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        other = await messaging_service.initialize(PROVIDER_ID, "someone@example.com")
        other_welcome = (await messaging_service.list_messages(other.id))[0]

        updated = await messaging_service.mark_read(
            [other_welcome.id], SenderType.CUSTOMER, conversation_id=mine.id
        )

        assert updated == 0


# =============================================================================
# Admin operations
# =============================================================================

class TestAdminOperations:

    async def test_close_is_idempotent(self, messaging_service):
        conversation = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)

        closed = await messaging_service.close_conversation(conversation.id)
        again = await messaging_service.close_conversation(conversation.id)

        assert closed.status == ConversationStatus.CLOSED
        assert again.status == ConversationStatus.CLOSED

    async def test_close_unknown_conversation(self, messaging_service):
        with pytest.raises(NotFoundError):
            await messaging_service.close_conversation("00000000-0000-0000-0000-000000000000")

    async def test_inbox_summaries(self, messaging_service):
        quiet = await messaging_service.initialize(PROVIDER_ID, "quiet@example.com")
        busy = await messaging_service.initialize(PROVIDER_ID, CUSTOMER_EMAIL)
        await messaging_service.send(busy.id, SenderType.CUSTOMER, CUSTOMER_ID, "first")
        last = await messaging_service.send(busy.id, SenderType.CUSTOMER, CUSTOMER_ID, "second")

        inbox = await messaging_service.list_inbox()

        assert [s.conversation.id for s in inbox] == [busy.id, quiet.id]
        assert inbox[0].last_message.id == last.id
        assert inbox[0].unread_count == 2
        assert inbox[1].unread_count == 0
        assert inbox[1].last_message.sender_type == SenderType.SUPPORT
