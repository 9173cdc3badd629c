"""WebSocket endpoint for live list and conversation updates."""

import logging
import re

from fastapi import APIRouter, Depends, Header, Query, WebSocket, WebSocketDisconnect
from sqlmodel import Session

from listpilot.core.database import get_session
from listpilot.models.account import User
from listpilot.models.conversation import Conversation
from listpilot.models.lists import TaskList
from listpilot.services.lists import can_access

router = APIRouter()
logger = logging.getLogger(__name__)

SCOPE_PATTERN = re.compile(r"^(user|conversation)_\d+$|^list_[\w-]+$")


def can_subscribe(session: Session, user: User, scope: str) -> bool:
    """Users see their own dashboard and conversations, and lists they own or share."""
    kind, _, key = scope.partition("_")
    if kind == "user":
        return key == str(user.id)
    if kind == "conversation":
        conv = session.get(Conversation, int(key))
        return conv is not None and conv.user_id == user.id and conv.status != "deleted"
    return can_access(session, user.id, session.get(TaskList, key))


@router.websocket("/ws/{scope}")
async def live_websocket(
    websocket: WebSocket,
    scope: str,
    user_id: int | None = Query(default=None),
    x_user_id: int | None = Header(default=None),
    session: Session = Depends(get_session),
):
    """Subscribe to one scope: user_{id}, list_{id} or conversation_{id}.

    Browsers cannot set headers on a WebSocket, so the acting user may also
    come from the user_id query parameter.
    """
    if not SCOPE_PATTERN.match(scope):
        await websocket.close(code=1008)
        return

    acting_id = x_user_id if x_user_id is not None else user_id
    user = session.get(User, acting_id) if acting_id is not None else None
    if user is None or not can_subscribe(session, user, scope):
        logger.warning(f"Refused live subscription to {scope} for user {acting_id}")
        await websocket.close(code=1008)
        return

    hub = websocket.app.state.services.transport
    await hub.connect(websocket, scope)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        hub.disconnect(websocket, scope)
    except Exception as e:
        logger.error(f"Live socket error on {scope}: {e}")
        hub.disconnect(websocket, scope)
