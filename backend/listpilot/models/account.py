"""Organizations and users. Accounts are managed elsewhere; these rows scope access."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from listpilot.models.conversation import utcnow


class Organization(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: int = Field(foreign_key="organization.id", index=True)
    name: str
    email: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
