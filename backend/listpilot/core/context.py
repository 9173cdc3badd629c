"""Explicit per-turn context passed through every pipeline component."""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class TurnContext:
    user_id: int
    organization_id: int
    conversation_id: int | None = None
    focused_list_id: str | None = None

    def for_conversation(self, conversation_id: int, focused_list_id: str | None = None) -> "TurnContext":
        return replace(
            self,
            conversation_id=conversation_id,
            focused_list_id=focused_list_id if focused_list_id is not None else self.focused_list_id,
        )
