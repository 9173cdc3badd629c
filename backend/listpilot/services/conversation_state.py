"""Conversation health: stable/unstable state and history checkpoints.

A conversation turns ``unstable`` when too many messages pile up after its last
checkpoint, or when a tool message lost its tool-call id. Checkpointing writes
a short deterministic summary; the agent's history then starts after it.
"""

import logging
from datetime import timedelta

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from listpilot.core.config import settings
from listpilot.models.conversation import (
    ChatMessage,
    Conversation,
    ConversationActivity,
    ConversationCheckpoint,
    utcnow,
)
from listpilot.models.lists import TaskList

logger = logging.getLogger(__name__)

SUMMARY_LIST_LIMIT = 5


def latest_checkpoint(session: Session, conversation_id: int) -> ConversationCheckpoint | None:
    return session.exec(
        select(ConversationCheckpoint)
        .where(ConversationCheckpoint.conversation_id == conversation_id)
        .order_by(col(ConversationCheckpoint.last_message_id).desc(), col(ConversationCheckpoint.id).desc())
    ).first()


class ConversationStateManager:
    def __init__(self, engine: Engine, checkpoint_after_messages: int | None = None):
        self.engine = engine
        self.checkpoint_after_messages = (
            settings.checkpoint_after_messages if checkpoint_after_messages is None else checkpoint_after_messages
        )

    def _messages_after(self, session: Session, conversation_id: int, after_id: int) -> list[ChatMessage]:
        return list(session.exec(
            select(ChatMessage)
            .where(ChatMessage.conversation_id == conversation_id, ChatMessage.id > after_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        ).all())

    def evaluate(self, conversation_id: int) -> str:
        """Recompute and store the conversation state."""
        with Session(self.engine) as session:
            conv = session.get(Conversation, conversation_id)
            if not conv:
                return "stable"
            checkpoint = latest_checkpoint(session, conversation_id)
            messages = self._messages_after(session, conversation_id, checkpoint.last_message_id if checkpoint else 0)

            orphaned = [m.id for m in messages if m.role == "tool" and not m.tool_call_id]
            state = "unstable" if orphaned or len(messages) > self.checkpoint_after_messages else "stable"
            if orphaned:
                logger.warning(f"Conversation {conversation_id} has tool messages without call ids: {orphaned}")

            if conv.state != state:
                conv.state = state
                session.add(conv)
                session.commit()
            return state

    def checkpoint(self, conversation_id: int) -> ConversationCheckpoint | None:
        """Checkpoint everything so far and mark the conversation stable."""
        with Session(self.engine, expire_on_commit=False) as session:
            conv = session.get(Conversation, conversation_id)
            if not conv:
                return None
            messages = list(session.exec(
                select(ChatMessage).where(ChatMessage.conversation_id == conversation_id)
                .order_by(ChatMessage.created_at, ChatMessage.id)
            ).all())
            if not messages:
                return None

            tool_count = sum(1 for m in messages if m.role == "tool")
            checkpoint = ConversationCheckpoint(
                conversation_id=conversation_id,
                last_message_id=max(m.id for m in messages),
                message_count=len(messages),
                tool_message_count=tool_count,
                summary=self._summary(session, conv, len(messages), tool_count),
            )
            session.add(checkpoint)
            conv.state = "stable"
            conv.updated_at = utcnow()
            session.add(conv)
            session.commit()

        logger.info(f"Checkpointed conversation {conversation_id} at message {checkpoint.last_message_id}")
        return checkpoint

    def _summary(self, session: Session, conv: Conversation, message_count: int, tool_count: int) -> str:
        activity = session.exec(
            select(ConversationActivity.entity_id)
            .where(ConversationActivity.conversation_id == conv.id, ConversationActivity.entity_type == "list")
            .order_by(col(ConversationActivity.created_at).desc(), col(ConversationActivity.id).desc())
        ).all()
        titles: list[str] = []
        for list_id in dict.fromkeys(activity):
            task_list = session.get(TaskList, list_id)
            if task_list and task_list.title not in titles:
                titles.append(task_list.title)
            if len(titles) >= SUMMARY_LIST_LIMIT:
                break

        summary = f"Earlier in this conversation: {message_count} messages, {tool_count} tool results."
        if titles:
            summary += f" Lists worked on: {', '.join(titles)}."
        return summary

    def history(self, conversation_id: int, limit: int | None = None) -> tuple[str | None, list[ChatMessage]]:
        """Messages after the latest checkpoint (most recent ``limit``) and that checkpoint's summary."""
        limit = settings.history_limit if limit is None else limit
        with Session(self.engine) as session:
            checkpoint = latest_checkpoint(session, conversation_id)
            messages = self._messages_after(session, conversation_id, checkpoint.last_message_id if checkpoint else 0)
        return (checkpoint.summary if checkpoint else None), messages[-limit:] if limit else messages

    def unstable_or_stale(self) -> list[int]:
        """Active conversations worth re-evaluating: already unstable, or long since the last checkpoint."""
        with Session(self.engine) as session:
            counts = session.exec(
                select(ChatMessage.conversation_id, func.count(ChatMessage.id))
                .join(Conversation, Conversation.id == ChatMessage.conversation_id)
                .where(Conversation.status == "active")
                .group_by(ChatMessage.conversation_id)
            ).all()
            unstable = session.exec(
                select(Conversation.id).where(Conversation.status == "active", Conversation.state == "unstable")
            ).all()
        candidates = {cid for cid, count in counts if count > self.checkpoint_after_messages}
        return sorted(candidates | set(unstable))

    def purge_activity(self, retention_days: int | None = None) -> int:
        days = settings.activity_retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        with Session(self.engine) as session:
            result = session.exec(delete(ConversationActivity).where(ConversationActivity.created_at < cutoff))
            session.commit()
            return result.rowcount or 0
