"""List and item tools for the agent."""

import logging
from dataclasses import dataclass

from listpilot.core.context import TurnContext
from listpilot.core.errors import ResolutionFailure
from listpilot.services.broadcast import BroadcastDispatcher
from listpilot.services.lists import ListService, serialize_item, serialize_list
from listpilot.services.planning import ComplexityAnalyzer, StructureEnrichmentEngine
from listpilot.services.resolver import ReferenceResolver
from listpilot.services.tools.base import BaseTool, ToolDefinition, ToolParameter, ToolResult
from listpilot.services.tools.operations import (
    AddItem,
    CompleteItem,
    CreateList,
    CreatePlannedLists,
    ListItems,
    ListLists,
)

logger = logging.getLogger(__name__)

ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "priority": {"type": "string", "enum": ["low", "medium", "high", "urgent"]},
        "item_type": {"type": "string", "enum": ["task", "milestone", "note", "reminder"]},
    },
    "required": ["title"],
}

GROUP_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "items": {"type": "array", "items": ITEM_SCHEMA},
    },
    "required": ["title"],
}


@dataclass
class ListToolkit:
    """Services shared by every list tool."""

    lists: ListService
    resolver: ReferenceResolver
    dispatcher: BroadcastDispatcher
    analyzer: ComplexityAnalyzer
    enrichment: StructureEnrichmentEngine


class ListTool(BaseTool):
    def __init__(self, kit: ListToolkit):
        self.kit = kit

    def _resolve_list(self, ctx: TurnContext, reference: str | None) -> str:
        match = self.kit.resolver.resolve_list(ctx, reference)
        if match is None:
            raise ResolutionFailure(f"no list matches {reference!r}")
        return match.id

    async def _create_tree(self, ctx: TurnContext, structure) -> ToolResult:
        root, children = self.kit.lists.create_tree(
            ctx,
            structure.root.as_dict(),
            [child.as_dict() for child in structure.children],
        )
        await self.kit.dispatcher.list_created(ctx.user_id, serialize_list(root), [c.id for c in children])
        titles = ", ".join(c.title for c in children)
        return ToolResult(
            success=True,
            summary=f"Created '{root.title}' with {len(children)} sub-lists: {titles}",
            payload={
                "list": serialize_list(root),
                "children": [serialize_list(c) for c in children],
            },
        )


class CreateListTool(ListTool):
    mutates = True

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_list",
            description=(
                "Create a new list. Multi-city, multi-phase or very large requests are automatically "
                "organized into a parent list with sub-lists."
            ),
            parameters=[
                ToolParameter(name="title", type="string", description="Title of the list"),
                ToolParameter(
                    name="description", type="string",
                    description="What the list is for, including any budget, duration or dates",
                    required=False,
                ),
                ToolParameter(
                    name="items", type="array", description="Initial items", required=False, items=ITEM_SCHEMA,
                ),
                ToolParameter(
                    name="list_type", type="string", description="Kind of list",
                    required=False, enum=["personal", "professional"],
                ),
            ],
        )

    async def execute(self, op: CreateList, ctx: TurnContext) -> ToolResult:
        items = [i.model_dump() for i in op.items]
        analysis = self.kit.analyzer.analyze(op.title, op.description, items)
        structure = self.kit.enrichment.enrich(op.title, op.description, items, analysis)
        logger.info(
            f"create_list '{op.title}': decomposition={analysis.needs_decomposition} "
            f"reasons={list(analysis.reasons)} children={len(structure.children)}"
        )

        if structure.is_hierarchical:
            return await self._create_tree(ctx, structure)

        root = structure.root
        task_list = self.kit.lists.create_list(
            ctx, root.title, root.description, [dict(i) for i in root.items], list_type=op.list_type,
        )
        await self.kit.dispatcher.list_created(ctx.user_id, serialize_list(task_list))
        return ToolResult(
            success=True,
            summary=f"Created list '{task_list.title}' with {len(root.items)} items",
            payload={"list": serialize_list(task_list), "items": [dict(i) for i in root.items]},
        )


class CreatePlannedListsTool(ListTool):
    mutates = True

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="create_planned_lists",
            description="Create a parent list with explicitly specified sub-lists (e.g. one per city or phase).",
            parameters=[
                ToolParameter(name="title", type="string", description="Title of the parent list"),
                ToolParameter(name="description", type="string", description="Overall description", required=False),
                ToolParameter(
                    name="nested_lists", type="array",
                    description="Sub-lists, each with a title and optional items",
                    items=GROUP_SCHEMA,
                ),
                ToolParameter(
                    name="list_type", type="string", description="Kind of list",
                    required=False, enum=["personal", "professional"],
                ),
            ],
        )

    async def execute(self, op: CreatePlannedLists, ctx: TurnContext) -> ToolResult:
        groups = [g.model_dump() for g in op.nested_lists]
        analysis = self.kit.analyzer.analyze(op.title, op.description, [], groups)
        structure = self.kit.enrichment.enrich(op.title, op.description, [], analysis, nested_groups=groups)
        return await self._create_tree(ctx, structure)


class AddItemTool(ListTool):
    mutates = True

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="add_item",
            description="Add an item to a list. The list can be referenced by id, title, or 'this list'.",
            parameters=[
                ToolParameter(
                    name="list_ref", type="string",
                    description="List id, title, or a phrase like 'this list'. Omit for the current list.",
                    required=False,
                ),
                ToolParameter(name="title", type="string", description="Item title"),
                ToolParameter(name="description", type="string", description="Item details", required=False),
                ToolParameter(
                    name="priority", type="string", description="Priority",
                    required=False, enum=["low", "medium", "high", "urgent"],
                ),
                ToolParameter(
                    name="item_type", type="string", description="Item type",
                    required=False, enum=["task", "milestone", "note", "reminder"],
                ),
            ],
        )

    async def execute(self, op: AddItem, ctx: TurnContext) -> ToolResult:
        list_id = self._resolve_list(ctx, op.list_ref)
        item = self.kit.lists.add_item(ctx, list_id, op.title, op.description, op.priority, op.item_type)
        payload = serialize_item(item)
        await self.kit.dispatcher.item_changed(
            self.kit.lists.owner_of(list_id) or ctx.user_id, list_id, payload, "added", actor_id=ctx.user_id,
        )
        return ToolResult(success=True, summary=f"Added '{item.title}'", payload={"item": payload})


class CompleteItemTool(ListTool):
    mutates = True

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="complete_item",
            description="Mark an item as completed.",
            parameters=[
                ToolParameter(name="item_ref", type="string", description="Item id or title"),
                ToolParameter(
                    name="list_ref", type="string",
                    description="List the item belongs to, if known", required=False,
                ),
            ],
        )

    async def execute(self, op: CompleteItem, ctx: TurnContext) -> ToolResult:
        list_id = self._resolve_list(ctx, op.list_ref) if op.list_ref else None
        match = self.kit.resolver.resolve_item(ctx, op.item_ref, list_id)
        if match is None:
            raise ResolutionFailure(f"no item matches {op.item_ref!r}", "I couldn't find that item.")
        item = self.kit.lists.complete_item(ctx, match.id)
        payload = serialize_item(item)
        await self.kit.dispatcher.item_changed(
            self.kit.lists.owner_of(item.list_id) or ctx.user_id, item.list_id, payload, "completed",
            actor_id=ctx.user_id,
        )
        return ToolResult(success=True, summary=f"Completed '{item.title}'", payload={"item": payload})


class ListListsTool(ListTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="list_lists",
            description="List the user's lists, optionally filtered by a search query or status.",
            parameters=[
                ToolParameter(name="query", type="string", description="Text to match in titles", required=False),
                ToolParameter(
                    name="status", type="string", description="Filter by status",
                    required=False, enum=["draft", "active", "completed", "archived"],
                ),
            ],
        )

    async def execute(self, op: ListLists, ctx: TurnContext) -> ToolResult:
        rows = self.kit.lists.user_lists(ctx, query=op.query, status=op.status)
        lists = [serialize_list(task_list, total, done) for task_list, total, done in rows]
        return ToolResult(success=True, summary=f"Found {len(lists)} lists", payload={"lists": lists})


class ListItemsTool(ListTool):
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name="list_items",
            description="Show the items of a list.",
            parameters=[
                ToolParameter(
                    name="list_ref", type="string",
                    description="List id, title, or 'this list'. Omit for the current list.",
                    required=False,
                ),
                ToolParameter(
                    name="status", type="string", description="Filter by item status",
                    required=False, enum=["pending", "in_progress", "completed"],
                ),
            ],
        )

    async def execute(self, op: ListItems, ctx: TurnContext) -> ToolResult:
        list_id = self._resolve_list(ctx, op.list_ref)
        task_list = self.kit.lists.get_list(ctx, list_id)
        items = [serialize_item(i) for i in self.kit.lists.items(ctx, list_id, op.status)]
        return ToolResult(
            success=True,
            summary=f"'{task_list.title}' has {len(items)} items",
            payload={"list": serialize_list(task_list), "items": items},
        )
