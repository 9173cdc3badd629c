"""Tests for the tool executor, the list tools and broadcast fan-out."""

import asyncio

import pytest

from sqlmodel import Session

from tests.conftest import FakeTransport, seed_user, test_engine
from listpilot.models.lists import ListShare
from listpilot.services.broadcast import BroadcastDispatcher, ConnectionHub
from listpilot.services.container import build_services
from listpilot.services.tools.operations import CreateList, parse_operation


def _run(services, ctx, name, arguments):
    return asyncio.run(services.executor.execute(name, arguments, ctx))


def _event_types(transport):
    return [event["type"] for _, event in transport.events]


def test_registry_lists_catalog(services):
    names = [d["name"] for d in services.registry.gemini_declarations()]
    assert names == [
        "create_list", "create_planned_lists", "add_item", "complete_item", "list_lists", "list_items",
    ]
    create = services.registry.gemini_declarations()[0]
    assert create["parameters"]["required"] == ["title"]
    assert create["parameters"]["properties"]["items"]["items"]["required"] == ["title"]


def test_unknown_tool_is_a_failed_result(services, ctx):
    result = _run(services, ctx, "delete_everything", {})
    assert not result.success
    assert "Unknown tool" in result.summary


def test_invalid_arguments_are_a_failed_result(services, ctx):
    result = _run(services, ctx, "add_item", {"list_ref": "Groceries"})
    assert not result.success
    assert result.summary.startswith("Invalid arguments for add_item")
    assert result.payload["error"] == "validation"

    result = _run(services, ctx, "add_item", {"title": "milk", "priority": "asap"})
    assert not result.success


def test_unresolved_list_is_a_failed_result(services, ctx, transport):
    result = _run(services, ctx, "add_item", {"list_ref": "Nonexistent", "title": "milk"})
    assert not result.success
    assert result.summary == "I couldn't find that list."
    assert result.payload["error"] == "ResolutionFailure"
    assert transport.events == []


def test_string_items_are_accepted():
    op = parse_operation("create_list", {"title": "Groceries", "items": ["milk", {"title": "eggs"}]})
    assert isinstance(op, CreateList)
    assert [i.title for i in op.items] == ["milk", "eggs"]


def test_create_flat_list(services, ctx, transport):
    result = _run(services, ctx, "create_list", {"title": "Groceries", "items": ["milk", "eggs"]})
    assert result.success
    assert result.payload["list"]["title"] == "Groceries"
    assert [i.title for i in services.lists.items(ctx, result.payload["list"]["id"])] == ["milk", "eggs"]
    assert transport.events[0][0] == f"user_{ctx.user_id}"
    assert _event_types(transport) == ["list_created"]


def test_create_list_decomposes_roadshow(services, ctx, transport):
    result = _run(services, ctx, "create_list", {"title": "Plan a 3-city roadshow for Q2"})
    assert result.success
    children = result.payload["children"]
    assert [c["title"] for c in children] == ["City 1", "City 2", "City 3"]
    root_id = result.payload["list"]["id"]
    assert services.lists.items(ctx, root_id) == []
    assert all(c["parent_id"] == root_id for c in children)
    assert services.lists.items(ctx, children[0]["id"])[0].title == "Book venue"

    scope, event = transport.events[0]
    assert event["type"] == "list_created"
    assert event["child_ids"] == [c["id"] for c in children]


def test_create_planned_lists(services, ctx):
    result = _run(services, ctx, "create_planned_lists", {
        "title": "Office move",
        "nested_lists": [{"title": "Packing", "items": ["boxes"]}, {"title": "IT"}],
    })
    assert result.success
    assert [c["title"] for c in result.payload["children"]] == ["Packing", "IT"]

    result = _run(services, ctx, "create_planned_lists", {"title": "Empty", "nested_lists": []})
    assert not result.success


def test_add_and_complete_item_by_title(services, ctx, transport):
    _run(services, ctx, "create_list", {"title": "Errands"})
    added = _run(services, ctx, "add_item", {"list_ref": "errands", "title": "milk"})
    assert added.success
    assert added.payload["item"]["position"] == 0

    done = _run(services, ctx, "complete_item", {"item_ref": "milk", "list_ref": "Errands"})
    assert done.success
    assert done.payload["item"]["status"] == "completed"
    assert _event_types(transport) == ["list_created", "item_changed", "item_changed", "item_changed", "item_changed"]


def test_collaborator_change_reaches_the_owner(services, ctx, transport):
    owner = seed_user("Bob", "bob@example.com")
    task_list = services.lists.create_list(owner, "Shared chores")
    with Session(test_engine) as session:
        session.add(ListShare(list_id=task_list.id, user_id=ctx.user_id, permission="collaborate"))
        session.commit()

    result = _run(services, ctx, "add_item", {"list_ref": task_list.id, "title": "mop floors"})
    assert result.success

    scopes = [scope for scope, event in transport.events if event["type"] == "item_changed"]
    assert scopes == [f"user_{owner.user_id}", f"user_{ctx.user_id}", f"list_{task_list.id}"]


def test_complete_unknown_item(services, ctx):
    _run(services, ctx, "create_list", {"title": "Errands"})
    result = _run(services, ctx, "complete_item", {"item_ref": "caviar"})
    assert not result.success
    assert result.summary == "I couldn't find that item."


def test_list_lists_and_items(services, ctx):
    _run(services, ctx, "create_list", {"title": "Groceries", "items": ["milk", "eggs"]})
    _run(services, ctx, "complete_item", {"item_ref": "milk"})

    listed = _run(services, ctx, "list_lists", {})
    assert listed.payload["lists"][0]["item_count"] == 2
    assert listed.payload["lists"][0]["completed_count"] == 1

    items = _run(services, ctx, "list_items", {"list_ref": "Groceries", "status": "pending"})
    assert [i["title"] for i in items.payload["items"]] == ["eggs"]


def test_broadcast_failure_does_not_fail_the_tool(provider, classifier, ctx):
    services = build_services(test_engine, provider, classifier, FakeTransport(fail=True))
    result = _run(services, ctx, "create_list", {"title": "Groceries"})
    assert result.success
    assert services.lists.user_lists(ctx)[0][0].title == "Groceries"


def test_unexpected_error_is_a_failed_result(services, ctx, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(services.lists, "user_lists", explode)
    result = _run(services, ctx, "list_lists", {})
    assert not result.success
    assert result.payload["error"] == "internal"


class _DeadSocket:
    async def send_text(self, message):
        raise ConnectionError("closed")


class _LiveSocket:
    def __init__(self):
        self.sent = []

    async def send_text(self, message):
        self.sent.append(message)


def test_hub_drops_dead_sockets():
    hub = ConnectionHub()
    live, dead = _LiveSocket(), _DeadSocket()
    hub._connections["user_1"] = {live, dead}

    asyncio.run(BroadcastDispatcher(hub).list_updated(1, "abc", {"title": "New"}))

    assert hub.subscriber_count("user_1") == 1
    assert '"list_updated"' in live.sent[0]


@pytest.mark.parametrize("status", ["completed", "failed"])
def test_turn_completed_goes_to_conversation_scope(status):
    transport = FakeTransport()
    asyncio.run(BroadcastDispatcher(transport).turn_completed(5, 9, [10, 11], status))
    scope, event = transport.events[0]
    assert scope == "conversation_5"
    assert event["placeholder_id"] == 9
    assert event["status"] == status
