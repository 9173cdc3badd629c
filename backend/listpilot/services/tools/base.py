"""Base tool interface. All tools the agent can use implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from listpilot.core.context import TurnContext


@dataclass
class ToolParameter:
    name: str
    type: str  # "string" | "integer" | "boolean" | "number" | "array" | "object"
    description: str
    required: bool = True
    enum: list[str] | None = None
    items: dict | None = None  # element schema for "array"


@dataclass
class ToolDefinition:
    name: str
    description: str
    parameters: list[ToolParameter] = field(default_factory=list)

    def to_gemini_schema(self) -> dict:
        """Convert to Gemini function declaration format."""
        properties = {}
        required = []
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.type, "description": param.description}
            if param.enum:
                prop["enum"] = param.enum
            if param.items:
                prop["items"] = param.items
            properties[param.name] = prop
            if param.required:
                required.append(param.name)

        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        }


@dataclass
class ToolResult:
    """What every tool call returns. Failures are results, not exceptions."""

    success: bool
    summary: str
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, summary: str, **payload: Any) -> "ToolResult":
        return cls(success=False, summary=summary, payload=payload)

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "summary": self.summary, "payload": self.payload}


class BaseTool(ABC):
    mutates: bool = False

    @abstractmethod
    def definition(self) -> ToolDefinition:
        """Return the tool's definition for LLM function calling."""
        ...

    @abstractmethod
    async def execute(self, op: BaseModel, ctx: TurnContext) -> ToolResult:
        """Run an already-validated operation on behalf of ``ctx``."""
        ...
