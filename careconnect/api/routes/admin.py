"""
Admin Routes for the Support Inbox and Billing

Support staff see every conversation, follow it live, reply as CareConnect
support and close it. They can also resync a provider from Stripe and read
its billing history. Protected by the admin user check.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sse_starlette.sse import EventSourceResponse

from careconnect.config.settings import get_settings
from careconnect.domain.messaging import (
    Conversation,
    ConversationSummary,
    Message,
    SenderType,
)
from careconnect.domain.subscription import PaymentRecord, StripeSyncResult
from careconnect.api.dependencies import (
    BillingSyncServiceDep,
    MessagingServiceDep,
    SubscriptionRepoDep,
    require_admin,
)
from careconnect.api.routes.conversations import (
    MarkReadRequest,
    MarkReadResponse,
    SendMessageRequest,
    message_events,
)
from careconnect.infrastructure.payments.stripe_service import StripeServiceError

logger = logging.getLogger(__name__)


router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)]  # Protect ALL admin routes
)


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_inbox(
    service: MessagingServiceDep,
    limit: int = 50,
    offset: int = 0,
):
    """
    Support inbox, most recently active conversations first.

    Each entry carries the latest message and the number of customer
    messages support has not read yet.
    """
    return await service.list_inbox(limit=limit, offset=offset)


@router.get("/conversations/{conversation_id}/messages", response_model=List[Message])
async def list_conversation_messages(
    conversation_id: str,
    service: MessagingServiceDep,
    limit: int = 200,
    offset: int = 0,
):
    """Full message history of any conversation."""
    await service.get_conversation(conversation_id)
    return await service.list_messages(conversation_id, limit=limit, offset=offset)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=Message,
    status_code=status.HTTP_201_CREATED,
)
async def reply_as_support(
    conversation_id: str,
    request: SendMessageRequest,
    service: MessagingServiceDep,
):
    """Reply under the shared support identity."""
    message = await service.send(
        conversation_id,
        sender_type=SenderType.SUPPORT,
        sender_id=get_settings().support_user_id,
        content=request.content,
    )
    logger.info(f"Support replied in conversation {conversation_id}")
    return message


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read_as_support(
    conversation_id: str,
    request: MarkReadRequest,
    service: MessagingServiceDep,
):
    """Mark customer messages in this conversation as read."""
    updated = await service.mark_read(
        request.message_ids,
        SenderType.SUPPORT,
        conversation_id=conversation_id,
    )
    return MarkReadResponse(updated=updated)


@router.post("/conversations/{conversation_id}/close", response_model=Conversation)
async def close_conversation(
    conversation_id: str,
    service: MessagingServiceDep,
):
    """Close a conversation; further messages are rejected."""
    return await service.close_conversation(conversation_id)


@router.get("/conversations/{conversation_id}/stream")
async def stream_conversation(
    conversation_id: str,
    request: Request,
    service: MessagingServiceDep,
):
    """
    Live Server-Sent Events for any conversation.

    Same events as the customer stream, including the ``delayed`` status
    when live updates cannot be set up.
    """
    await service.get_conversation(conversation_id)
    return EventSourceResponse(message_events(service, conversation_id, request))


# =============================================================================
# Billing
# =============================================================================

@router.post("/providers/{provider_id}/sync-stripe", response_model=StripeSyncResult)
async def sync_provider_from_stripe(
    provider_id: str,
    sync_service: BillingSyncServiceDep,
):
    """
    Rewrite a provider's subscription status and period from Stripe.

    Returns 404 for an unknown provider and 400 when the provider has no
    Stripe customer yet.
    """
    try:
        return await sync_service.sync_provider(provider_id)
    except StripeServiceError as e:
        logger.error(f"Stripe sync failed for provider {provider_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not reach Stripe"
        )


@router.get("/providers/{provider_id}/payments", response_model=List[PaymentRecord])
async def list_provider_payments(
    provider_id: str,
    repo: SubscriptionRepoDep,
):
    """Billing history of a provider, newest first."""
    return await repo.list_payments(provider_id)
