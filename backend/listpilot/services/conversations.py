"""Conversation and message persistence."""

import logging
from typing import Any

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from listpilot.core.context import TurnContext
from listpilot.core.errors import ConversationClosed, ConversationNotFound
from listpilot.models.conversation import (
    ChatMessage,
    Conversation,
    ConversationCheckpoint,
    utcnow,
)
from listpilot.models.security import SecurityViolation

logger = logging.getLogger(__name__)


def serialize_message(m: ChatMessage) -> dict[str, Any]:
    return {
        "id": m.id,
        "role": m.role,
        "content": m.content,
        "blocked": m.blocked,
        "template_type": m.template_type,
        "template_data": m.template_data,
        "tool_call_id": m.tool_call_id,
        "tool_name": m.tool_name,
        "meta": m.meta or {},
        "created_at": m.created_at.isoformat(),
    }


def serialize_conversation(c: Conversation) -> dict[str, Any]:
    return {
        "id": c.id,
        "title": c.title,
        "status": c.status,
        "state": c.state,
        "focused_list_id": c.focused_list_id,
        "meta": c.meta or {},
        "last_activity_at": c.last_activity_at.isoformat(),
        "created_at": c.created_at.isoformat(),
        "updated_at": c.updated_at.isoformat(),
    }


class ConversationService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, ctx: TurnContext, title: str = "New Conversation", focused_list_id: str | None = None) -> Conversation:
        with Session(self.engine, expire_on_commit=False) as session:
            conv = Conversation(
                user_id=ctx.user_id,
                organization_id=ctx.organization_id,
                title=title[:80] or "New Conversation",
                focused_list_id=focused_list_id,
            )
            session.add(conv)
            session.commit()
            session.refresh(conv)
        logger.debug(f"Created conversation {conv.id} for user {ctx.user_id}")
        return conv

    def get(self, ctx: TurnContext, conversation_id: int, include_deleted: bool = False) -> Conversation:
        with Session(self.engine, expire_on_commit=False) as session:
            conv = session.get(Conversation, conversation_id)
            if not conv or conv.user_id != ctx.user_id or (conv.status == "deleted" and not include_deleted):
                raise ConversationNotFound(f"conversation {conversation_id} not found for user {ctx.user_id}")
            return conv

    def get_open(self, ctx: TurnContext, conversation_id: int) -> Conversation:
        """An active conversation, or ConversationClosed when it no longer accepts messages."""
        conv = self.get(ctx, conversation_id)
        if conv.status != "active":
            raise ConversationClosed(f"conversation {conversation_id} is {conv.status}")
        return conv

    def list_for_user(self, ctx: TurnContext, status: str | None = None) -> list[Conversation]:
        with Session(self.engine) as session:
            stmt = select(Conversation).where(Conversation.user_id == ctx.user_id)
            if status:
                stmt = stmt.where(Conversation.status == status)
            else:
                stmt = stmt.where(Conversation.status != "deleted")
            return list(session.exec(stmt.order_by(col(Conversation.updated_at).desc())).all())

    def set_status(self, ctx: TurnContext, conversation_id: int, status: str, reason: str | None = None) -> Conversation:
        with Session(self.engine, expire_on_commit=False) as session:
            conv = session.get(Conversation, conversation_id)
            if not conv or conv.user_id != ctx.user_id or conv.status == "deleted":
                raise ConversationNotFound(f"conversation {conversation_id} not found for user {ctx.user_id}")
            conv.status = status
            meta = dict(conv.meta or {})
            if status == "active":
                meta.pop("archived_reason", None)
            elif reason:
                meta[f"{status}_reason"] = reason
            conv.meta = meta
            conv.updated_at = utcnow()
            session.add(conv)
            session.commit()
            session.refresh(conv)
        logger.info(f"Conversation {conversation_id} -> {status}")
        return conv

    def update_meta(self, conversation_id: int, **values: Any) -> None:
        with Session(self.engine) as session:
            conv = session.get(Conversation, conversation_id)
            if conv:
                conv.meta = {**(conv.meta or {}), **values}
                session.add(conv)
                session.commit()

    def touch(self, conversation_id: int) -> None:
        with Session(self.engine) as session:
            conv = session.get(Conversation, conversation_id)
            if conv:
                conv.last_activity_at = conv.updated_at = utcnow()
                session.add(conv)
                session.commit()

    def save_message(self, conversation_id: int, role: str, content: str, **fields: Any) -> ChatMessage:
        with Session(self.engine, expire_on_commit=False) as session:
            msg = ChatMessage(conversation_id=conversation_id, role=role, content=content, **fields)
            session.add(msg)
            session.commit()
            session.refresh(msg)
            return msg

    def update_message(self, message_id: int, **fields: Any) -> ChatMessage | None:
        with Session(self.engine, expire_on_commit=False) as session:
            msg = session.get(ChatMessage, message_id)
            if not msg:
                return None
            for key, value in fields.items():
                setattr(msg, key, value)
            session.add(msg)
            session.commit()
            session.refresh(msg)
            return msg

    def get_message(self, message_id: int) -> ChatMessage | None:
        with Session(self.engine) as session:
            return session.get(ChatMessage, message_id)

    def messages(self, conversation_id: int) -> list[ChatMessage]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(ChatMessage)
                .where(ChatMessage.conversation_id == conversation_id)
                .order_by(ChatMessage.created_at, ChatMessage.id)
            ).all())

    def tool_call_ids(self, conversation_id: int) -> set[str]:
        with Session(self.engine) as session:
            return set(session.exec(
                select(ChatMessage.tool_call_id).where(
                    ChatMessage.conversation_id == conversation_id,
                    col(ChatMessage.tool_call_id).is_not(None),
                )
            ).all())

    def rename(self, conversation_id: int, title: str) -> None:
        with Session(self.engine) as session:
            conv = session.get(Conversation, conversation_id)
            if conv:
                conv.title = title[:80] or "New Conversation"
                session.add(conv)
                session.commit()

    def clear(self, conversation_id: int) -> int:
        """Delete the messages and checkpoints of a conversation.

        Messages referenced by a security violation stay, so the audit trail keeps its links.
        """
        audited = select(SecurityViolation.message_id).where(col(SecurityViolation.message_id).is_not(None))
        with Session(self.engine) as session:
            result = session.exec(
                delete(ChatMessage).where(
                    ChatMessage.conversation_id == conversation_id,
                    col(ChatMessage.id).not_in(audited),
                )
            )
            session.exec(delete(ConversationCheckpoint).where(ConversationCheckpoint.conversation_id == conversation_id))
            conv = session.get(Conversation, conversation_id)
            if conv:
                conv.state = "stable"
                conv.updated_at = utcnow()
                session.add(conv)
            session.commit()
            return result.rowcount or 0
