"""
Conversation Change Feed

In-process publish/subscribe of newly accepted messages, keyed by
conversation. Every subscriber owns an unbounded asyncio.Queue, so a slow
or failing subscriber never holds up the others and no cursor is shared.

Only subscribers in the same process see a message. Multi-worker
deployments need an external broker in front of this interface.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Union

from careconnect.domain.messaging import Message


logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Union[None, Awaitable[None]]]

# Wakes a consumer blocked on an empty queue after unsubscribe
_CLOSED = object()


class MessageSubscription:
    """
    Async iterator over messages published to one conversation.

    Usage:
        subscription = feed.open(conversation_id)
        async for message in subscription:
            ...
        subscription.unsubscribe()
    """

    def __init__(self, feed: "ConversationChangeFeed", conversation_id: str):
        self._feed = feed
        self.conversation_id = conversation_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: Message) -> None:
        if not self._closed:
            self._queue.put_nowait(message)

    def unsubscribe(self) -> None:
        """Stop receiving messages. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        self._queue.put_nowait(_CLOSED)

    async def aclose(self) -> None:
        self.unsubscribe()

    async def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """
        Wait for the next message.

        Messages queued before unsubscribe are still handed out; after them
        None is returned. Also returns None when the timeout expires.
        """
        if self._closed and self._queue.empty():
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> "MessageSubscription":
        return self

    async def __anext__(self) -> Message:
        message = await self.get()
        if message is None:
            raise StopAsyncIteration
        return message


class Subscription:
    """
    Callback-driven subscription.

    A dedicated task pulls from the underlying MessageSubscription and calls
    on_message once per message, in publish order. The callback may be a
    plain function or a coroutine function.
    """

    def __init__(self, stream: MessageSubscription, on_message: MessageCallback):
        self._stream = stream
        self._on_message = on_message
        self._task = asyncio.create_task(
            self._consume(),
            name=f"conversation-subscriber-{stream.conversation_id}",
        )

    @property
    def conversation_id(self) -> str:
        return self._stream.conversation_id

    @property
    def active(self) -> bool:
        return not self._stream.closed

    async def _consume(self) -> None:
        async for message in self._stream:
            try:
                result = self._on_message(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    f"Subscriber callback failed for message {message.id} "
                    f"in conversation {self.conversation_id}"
                )

    def unsubscribe(self) -> None:
        """
        Stop callbacks for messages published from now on. Idempotent.

        A callback that is already running finishes normally, and messages
        already queued for this subscriber are still delivered.
        """
        self._stream.unsubscribe()

    async def wait_closed(self) -> None:
        """Wait until the consumer task has exited after unsubscribe."""
        await self._task


class ConversationChangeFeed:
    """Registry of live subscribers per conversation."""

    def __init__(self):
        self._subscribers: Dict[str, List[MessageSubscription]] = defaultdict(list)

    def open(self, conversation_id: str) -> MessageSubscription:
        """Register a new subscriber that sees messages published from now on."""
        subscription = MessageSubscription(self, conversation_id)
        self._subscribers[conversation_id].append(subscription)
        logger.debug(f"Subscriber added to conversation {conversation_id}")
        return subscription

    def publish(self, message: Message) -> int:
        """
        Fan a message out to every current subscriber of its conversation.

        Returns:
            Number of subscribers the message was queued for
        """
        subscribers = list(self._subscribers.get(message.conversation_id, ()))
        for subscription in subscribers:
            subscription.deliver(message)
        return len(subscribers)

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscribers.get(conversation_id, ()))

    def _remove(self, subscription: MessageSubscription) -> None:
        subscribers = self._subscribers.get(subscription.conversation_id)
        if not subscribers:
            return
        try:
            subscribers.remove(subscription)
        except ValueError:
            return
        if not subscribers:
            del self._subscribers[subscription.conversation_id]


# Singleton instance
_change_feed: Optional[ConversationChangeFeed] = None


def get_change_feed() -> ConversationChangeFeed:
    """Get or create the process-wide change feed."""
    global _change_feed
    if _change_feed is None:
        _change_feed = ConversationChangeFeed()
    return _change_feed
