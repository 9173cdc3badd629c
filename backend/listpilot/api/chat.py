"""Submit-message endpoint."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from listpilot.api.deps import get_services, get_turn_context
from listpilot.core.context import TurnContext
from listpilot.core.errors import ConversationClosed, ConversationNotFound

router = APIRouter()
logger = logging.getLogger(__name__)

# Turn outcome -> HTTP status
STATUS_CODES = {
    "completed": 200,
    "pending": 202,
    "blocked": 422,
    "failed": 503,
}


class SubmitMessage(BaseModel):
    content: str = Field(min_length=1, max_length=10000)
    conversation_id: int | None = None
    command: str | None = None


@router.post("/messages")
async def submit_message(
    body: SubmitMessage,
    ctx: TurnContext = Depends(get_turn_context),
    services=Depends(get_services),
):
    try:
        outcome = await services.orchestrator.submit(
            ctx, body.content, conversation_id=body.conversation_id, command=body.command,
        )
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=e.user_message)
    except ConversationClosed as e:
        raise HTTPException(status_code=409, detail=e.user_message)

    logger.debug(f"Turn outcome for conversation {outcome.conversation_id}: {outcome.status}")
    return JSONResponse(status_code=STATUS_CODES[outcome.status], content=asdict(outcome))
