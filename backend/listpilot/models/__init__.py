from listpilot.models.account import Organization, User
from listpilot.models.conversation import (
    ChatMessage,
    Conversation,
    ConversationActivity,
    ConversationCheckpoint,
)
from listpilot.models.lists import ListItem, ListShare, TaskList
from listpilot.models.security import SecurityViolation

__all__ = [
    "ChatMessage",
    "Conversation",
    "ConversationActivity",
    "ConversationCheckpoint",
    "ListItem",
    "ListShare",
    "Organization",
    "SecurityViolation",
    "TaskList",
    "User",
]
