"""
Conversation Routes for CareConnect

API endpoints for customers messaging CareConnect support about a provider.
New messages are pushed to open pages over Server-Sent Events.
"""

import json
import logging
from typing import AsyncIterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from careconnect.domain.messaging import Conversation, Message, SenderType
from careconnect.infrastructure.db.messaging_service import MessagingService
from careconnect.api.dependencies import (
    CurrentUser,
    MessagingServiceDep,
    get_current_user,
)


logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between checks for a disconnected client while no message arrives
STREAM_POLL_SECONDS = 15.0


# ============================================================================
# Request/Response Models
# ============================================================================

class InitializeConversationRequest(BaseModel):
    """Request to open (or reopen) the conversation about a provider."""
    provider_id: str = Field(..., min_length=1, max_length=64)
    booking_id: Optional[str] = Field(None, max_length=64)


class ConversationResponse(BaseModel):
    """Conversation with its message history."""
    conversation: Conversation
    messages: List[Message]


class SendMessageRequest(BaseModel):
    """Request to add a message to a conversation."""
    content: str


class MarkReadRequest(BaseModel):
    """IDs of messages the caller has seen."""
    message_ids: List[str] = Field(default_factory=list)


class MarkReadResponse(BaseModel):
    """Number of messages flipped to read."""
    updated: int


# ============================================================================
# Helpers
# ============================================================================

def _require_email(user: CurrentUser) -> str:
    if not user.email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Your account has no email address"
        )
    return user.email


async def _get_owned_conversation(
    service: MessagingService,
    conversation_id: str,
    user: CurrentUser,
) -> Conversation:
    """Load a conversation and check the caller is its customer."""
    conversation = await service.get_conversation(conversation_id)
    email = _require_email(user)
    if conversation.customer_email.strip().lower() != email.strip().lower():
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this conversation"
        )
    return conversation


# ============================================================================
# Conversation Endpoints
# ============================================================================

@router.post("/conversations", response_model=ConversationResponse)
async def initialize_conversation(
    request: InitializeConversationRequest,
    service: MessagingServiceDep,
    user: CurrentUser = Depends(get_current_user),
):
    """
    Get or create the caller's conversation about a provider.

    The first call for a key creates the conversation with a welcome
    message from support; later calls return the same conversation.
    """
    conversation = await service.initialize(
        provider_id=request.provider_id,
        customer_email=_require_email(user),
        booking_id=request.booking_id,
    )
    messages = await service.list_messages(conversation.id)
    return ConversationResponse(conversation=conversation, messages=messages)


@router.get("/conversations/{conversation_id}/messages", response_model=List[Message])
async def list_messages(
    conversation_id: str,
    service: MessagingServiceDep,
    limit: int = 200,
    offset: int = 0,
    user: CurrentUser = Depends(get_current_user),
):
    """Messages of a conversation, oldest first."""
    await _get_owned_conversation(service, conversation_id, user)
    return await service.list_messages(conversation_id, limit=limit, offset=offset)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    service: MessagingServiceDep,
    user: CurrentUser = Depends(get_current_user),
):
    """
    Send a message as the customer.

    Empty content is rejected with 400 and a closed conversation with 409.
    """
    await _get_owned_conversation(service, conversation_id, user)
    return await service.send(
        conversation_id,
        sender_type=SenderType.CUSTOMER,
        sender_id=user.id,
        content=request.content,
    )


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_messages_read(
    conversation_id: str,
    request: MarkReadRequest,
    service: MessagingServiceDep,
    user: CurrentUser = Depends(get_current_user),
):
    """Mark support messages in this conversation as read."""
    await _get_owned_conversation(service, conversation_id, user)
    updated = await service.mark_read(
        request.message_ids,
        SenderType.CUSTOMER,
        conversation_id=conversation_id,
    )
    return MarkReadResponse(updated=updated)


@router.get("/conversations/{conversation_id}/stream")
async def stream_messages(
    conversation_id: str,
    request: Request,
    service: MessagingServiceDep,
    user: CurrentUser = Depends(get_current_user),
):
    """
    Stream new messages via Server-Sent Events (SSE).

    Emits a ``status`` event once subscribed, then one ``message`` event per
    accepted message. If the subscription cannot be set up the stream sends
    ``{"state": "delayed"}`` and ends, and the client falls back to polling.
    """
    await _get_owned_conversation(service, conversation_id, user)
    return EventSourceResponse(message_events(service, conversation_id, request))


# ============================================================================
# Live Updates
# ============================================================================

async def message_events(
    service: MessagingService,
    conversation_id: str,
    request: Request,
) -> AsyncIterator[dict]:
    """
    SSE events for one conversation, shared by the customer and support views.

    Access checks happen in the route before this generator starts.
    """
    try:
        subscription = await service.stream(conversation_id)
    except Exception as e:
        logger.warning(f"Live updates unavailable for {conversation_id}: {e}")
        yield {
            "event": "status",
            "data": json.dumps({"state": "delayed"}),
        }
        return

    try:
        yield {
            "event": "status",
            "data": json.dumps({"state": "live"}),
        }

        while not subscription.closed:
            if await request.is_disconnected():
                break
            message = await subscription.get(timeout=STREAM_POLL_SECONDS)
            if message is None:
                continue
            yield {
                "event": "message",
                "id": message.id,
                "data": message.model_dump_json(),
            }
    finally:
        subscription.unsubscribe()
