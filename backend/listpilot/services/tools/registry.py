"""Tool registry and executor.

The executor is the boundary between the agent loop and the list service:
raw arguments go in, a ToolResult always comes out.
"""

import logging
from typing import Any

import pydantic

from listpilot.core.context import TurnContext
from listpilot.core.errors import PipelineError
from listpilot.services.tools.base import BaseTool, ToolDefinition, ToolResult
from listpilot.services.tools.list_tools import (
    AddItemTool,
    CompleteItemTool,
    CreateListTool,
    CreatePlannedListsTool,
    ListItemsTool,
    ListListsTool,
    ListToolkit,
)
from listpilot.services.tools.operations import parse_operation

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        defn = tool.definition()
        self._tools[defn.name] = tool

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition() for tool in self._tools.values()]

    def gemini_declarations(self) -> list[dict]:
        return [defn.to_gemini_schema() for defn in self.definitions()]


def create_default_registry(kit: ListToolkit) -> ToolRegistry:
    """Create a registry with the list tool catalog."""
    registry = ToolRegistry()

    registry.register(CreateListTool(kit))
    registry.register(CreatePlannedListsTool(kit))
    registry.register(AddItemTool(kit))
    registry.register(CompleteItemTool(kit))
    registry.register(ListListsTool(kit))
    registry.register(ListItemsTool(kit))

    return registry


def _describe_validation_error(e: pydantic.ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"] if p != "op")
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


class ToolExecutor:
    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, name: str, arguments: dict[str, Any] | None, ctx: TurnContext) -> ToolResult:
        tool = self.registry.get(name)
        if not tool:
            return ToolResult.failure(f"Unknown tool: {name}")

        try:
            op = parse_operation(name, arguments or {})
        except pydantic.ValidationError as e:
            detail = _describe_validation_error(e)
            logger.info(f"Tool {name} rejected invalid arguments: {detail}")
            return ToolResult.failure(f"Invalid arguments for {name}: {detail}", error="validation")

        try:
            result = await tool.execute(op, ctx)
        except PipelineError as e:
            logger.info(f"Tool {name} failed: {type(e).__name__}: {e.detail}")
            return ToolResult.failure(e.user_message, error=type(e).__name__)
        except Exception as e:
            logger.exception(f"Tool {name} raised unexpectedly")
            return ToolResult.failure(f"Error executing {name}: {e}", error="internal")

        logger.info(f"Tool {name}: {result.summary}")
        return result
