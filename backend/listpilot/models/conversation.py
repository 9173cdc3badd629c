"""Conversation, message and checkpoint models for chat history persistence."""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Conversation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    title: str = Field(default="New Conversation")
    focused_list_id: Optional[str] = Field(default=None, foreign_key="tasklist.id")
    status: str = Field(default="active")  # active | archived | deleted
    state: str = Field(default="stable")  # stable | unstable
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    last_activity_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    messages: list["ChatMessage"] = Relationship(back_populates="conversation")


class ChatMessage(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("conversation_id", "tool_call_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    role: str  # "user" | "assistant" | "system" | "tool"
    content: str = ""
    blocked: bool = Field(default=False)
    template_type: Optional[str] = None  # search_results | list_browser | pending | error | ...
    template_data: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)

    conversation: Optional[Conversation] = Relationship(back_populates="messages")


class ConversationCheckpoint(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: int = Field(foreign_key="conversation.id", index=True)
    last_message_id: int = 0  # history resumes after this message
    message_count: int = 0
    tool_message_count: int = 0
    summary: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ConversationActivity(SQLModel, table=True):
    """What a user recently did to which list or item, for resolving "this list"."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    conversation_id: Optional[int] = Field(default=None, foreign_key="conversation.id", index=True)
    action: str  # list_created | list_viewed | item_added | item_completed | ...
    entity_type: str  # list | item
    entity_id: str
    created_at: datetime = Field(default_factory=utcnow)
