"""REST API for conversation history management."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from listpilot.api.deps import get_services, get_turn_context
from listpilot.core.context import TurnContext
from listpilot.core.errors import ConversationNotFound
from listpilot.services.conversations import serialize_conversation, serialize_message

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/")
async def list_conversations(
    status: str | None = None,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    return [serialize_conversation(c) for c in services.conversations.list_for_user(ctx, status)]


@router.get("/{conversation_id}")
async def get_conversation(
    conversation_id: int,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    try:
        conv = services.conversations.get(ctx, conversation_id)
    except ConversationNotFound:
        logger.debug(f"Conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")

    return {
        **serialize_conversation(conv),
        "messages": [serialize_message(m) for m in services.conversations.messages(conversation_id)],
    }


def _set_status(services, ctx: TurnContext, conversation_id: int, status: str, reason: str | None = None):
    try:
        conv = services.conversations.set_status(ctx, conversation_id, status, reason)
    except ConversationNotFound:
        logger.debug(f"{status}: conversation {conversation_id} not found")
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"id": conv.id, "status": conv.status}


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    return _set_status(services, ctx, conversation_id, "deleted")


@router.post("/{conversation_id}/archive")
async def archive_conversation(
    conversation_id: int,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    return _set_status(services, ctx, conversation_id, "archived", "archived by user")


@router.post("/{conversation_id}/restore")
async def restore_conversation(
    conversation_id: int,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    return _set_status(services, ctx, conversation_id, "active")
