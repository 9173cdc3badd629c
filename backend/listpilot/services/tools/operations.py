"""Typed tool operations. One variant per catalog entry, tagged by ``op``.

Raw function-call arguments are validated into one of these before any tool
runs; a bad argument bag never reaches the list service.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

MAX_TITLE_LENGTH = 255

Priority = Literal["low", "medium", "high", "urgent"]
ItemType = Literal["task", "milestone", "note", "reminder"]
ItemStatus = Literal["pending", "in_progress", "completed"]


class ItemSpec(BaseModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    priority: Priority = "medium"
    item_type: ItemType = "task"

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty or whitespace-only")
        return v


def _coerce_items(v):
    # Models often send plain strings for items.
    if v is None:
        return []
    return [{"title": item} if isinstance(item, str) else item for item in v]


class GroupSpec(BaseModel):
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    items: list[ItemSpec] = Field(default_factory=list)

    @field_validator("items", mode="before")
    @classmethod
    def coerce_items(cls, v):
        return _coerce_items(v)


class CreateList(BaseModel):
    op: Literal["create_list"] = "create_list"
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    items: list[ItemSpec] = Field(default_factory=list)
    list_type: Literal["personal", "professional"] = "personal"

    @field_validator("items", mode="before")
    @classmethod
    def coerce_items(cls, v):
        return _coerce_items(v)


class CreatePlannedLists(BaseModel):
    op: Literal["create_planned_lists"] = "create_planned_lists"
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    nested_lists: list[GroupSpec] = Field(min_length=1)
    list_type: Literal["personal", "professional"] = "personal"


class AddItem(BaseModel):
    op: Literal["add_item"] = "add_item"
    list_ref: str | None = None
    title: str = Field(min_length=1, max_length=MAX_TITLE_LENGTH)
    description: str | None = None
    priority: Priority = "medium"
    item_type: ItemType = "task"


class CompleteItem(BaseModel):
    op: Literal["complete_item"] = "complete_item"
    item_ref: str = Field(min_length=1)
    list_ref: str | None = None


class ListLists(BaseModel):
    op: Literal["list_lists"] = "list_lists"
    query: str | None = None
    status: Literal["draft", "active", "completed", "archived"] | None = None


class ListItems(BaseModel):
    op: Literal["list_items"] = "list_items"
    list_ref: str | None = None
    status: ItemStatus | None = None


Operation = Annotated[
    Union[CreateList, CreatePlannedLists, AddItem, CompleteItem, ListLists, ListItems],
    Field(discriminator="op"),
]

operation_adapter: TypeAdapter[Operation] = TypeAdapter(Operation)


def parse_operation(name: str, arguments: dict) -> BaseModel:
    """Validate a raw call into its typed operation. Raises pydantic.ValidationError."""
    return operation_adapter.validate_python({**(arguments or {}), "op": name})
