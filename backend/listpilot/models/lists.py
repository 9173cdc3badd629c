"""Task lists, their items, and sharing grants."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from listpilot.models.conversation import utcnow

LIST_STATUSES = ("draft", "active", "completed", "archived")
ITEM_STATUSES = ("pending", "in_progress", "completed")
PRIORITIES = ("low", "medium", "high", "urgent")
ITEM_TYPES = ("task", "milestone", "note", "reminder")


def new_id() -> str:
    return str(uuid.uuid4())


class TaskList(SQLModel, table=True):
    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    parent_id: Optional[str] = Field(default=None, foreign_key="tasklist.id", index=True)
    title: str = Field(max_length=255)
    description: Optional[str] = None
    list_type: str = Field(default="personal")  # personal | professional
    status: str = Field(default="active")  # draft | active | completed | archived
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ListItem(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("list_id", "position"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    list_id: str = Field(foreign_key="tasklist.id", index=True)
    title: str = Field(max_length=255)
    description: Optional[str] = None
    item_type: str = Field(default="task")
    status: str = Field(default="pending")  # pending | in_progress | completed
    priority: str = Field(default="medium")  # low | medium | high | urgent
    position: int = 0
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ListShare(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("list_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    list_id: str = Field(foreign_key="tasklist.id", index=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    permission: str = Field(default="read")  # read | collaborate
