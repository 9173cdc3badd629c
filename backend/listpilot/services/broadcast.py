"""Live update fan-out to connected WebSocket clients.

Scopes are plain strings: ``user_{id}`` (dashboard), ``list_{id}`` and
``conversation_{id}``. Delivery is best-effort and at-most-once to whoever is
connected right now; a publish failure is logged and never reaches the caller.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from fastapi import WebSocket

from listpilot.models.conversation import utcnow

logger = logging.getLogger(__name__)


def user_scope(user_id: int) -> str:
    return f"user_{user_id}"


def list_scope(list_id: str) -> str:
    return f"list_{list_id}"


def conversation_scope(conversation_id: int) -> str:
    return f"conversation_{conversation_id}"


class RealtimeTransport(ABC):
    @abstractmethod
    async def publish(self, scope: str, event: dict[str, Any]) -> None:
        ...


class ConnectionHub(RealtimeTransport):
    """WebSocket connections grouped by scope."""

    def __init__(self):
        self._connections: dict[str, set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, scope: str):
        await websocket.accept()
        self._connections.setdefault(scope, set()).add(websocket)
        logger.info(f"Live client connected to {scope}")

    def disconnect(self, websocket: WebSocket, scope: str):
        if scope in self._connections:
            self._connections[scope].discard(websocket)
            if not self._connections[scope]:
                del self._connections[scope]
        logger.info(f"Live client disconnected from {scope}")

    def subscriber_count(self, scope: str) -> int:
        return len(self._connections.get(scope, ()))

    async def publish(self, scope: str, event: dict[str, Any]) -> None:
        if scope not in self._connections:
            return

        message = json.dumps(event, default=str)
        disconnected = set()

        for websocket in list(self._connections[scope]):
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.warning(f"Failed to send to live client on {scope}: {e}")
                disconnected.add(websocket)

        for ws in disconnected:
            self.disconnect(ws, scope)


class BroadcastDispatcher:
    def __init__(self, transport: RealtimeTransport):
        self.transport = transport

    async def _publish(self, scopes: list[str], event_type: str, payload: dict[str, Any]) -> None:
        event = {"type": event_type, "timestamp": utcnow().isoformat(), **payload}
        for scope in scopes:
            try:
                await self.transport.publish(scope, event)
            except Exception as e:
                logger.warning(f"Broadcast of {event_type} to {scope} failed: {e}")

    async def list_created(self, user_id: int, task_list: dict, child_ids: list[str] | None = None) -> None:
        await self._publish(
            [user_scope(user_id)],
            "list_created",
            {"list": task_list, "child_ids": child_ids or []},
        )

    async def list_updated(self, user_id: int, list_id: str, changes: dict | None = None) -> None:
        await self._publish(
            [user_scope(user_id), list_scope(list_id)],
            "list_updated",
            {"list_id": list_id, "changes": changes or {}},
        )

    async def item_changed(self, owner_id: int, list_id: str, item: dict, action: str,
                           actor_id: int | None = None) -> None:
        """Notify the list owner's dashboard, the acting collaborator's, and the list channel."""
        scopes = [user_scope(owner_id)]
        if actor_id is not None and actor_id != owner_id:
            scopes.append(user_scope(actor_id))
        await self._publish(
            scopes + [list_scope(list_id)],
            "item_changed",
            {"list_id": list_id, "item": item, "action": action},
        )

    async def turn_completed(self, conversation_id: int, placeholder_id: int | None,
                             message_ids: list[int], status: str = "completed") -> None:
        await self._publish(
            [conversation_scope(conversation_id)],
            "turn_completed",
            {
                "conversation_id": conversation_id,
                "placeholder_id": placeholder_id,
                "message_ids": message_ids,
                "status": status,
            },
        )
