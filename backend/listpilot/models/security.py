"""Append-only audit trail of injection and moderation verdicts."""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from listpilot.models.conversation import utcnow


class SecurityViolation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    violation_type: str  # prompt_injection | self_harm | sexual | violence | harassment | hate | other
    action_taken: str  # blocked | warned
    detected_patterns: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    risk_score: float = 0.0
    moderation_scores: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    details: str = ""
    message_id: Optional[int] = Field(default=None, foreign_key="chatmessage.id")
    conversation_id: Optional[int] = Field(default=None, foreign_key="conversation.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    organization_id: Optional[int] = Field(default=None, foreign_key="organization.id", index=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)
