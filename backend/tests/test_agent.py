"""Tests for the agent tool loop."""

import asyncio

import pytest

from tests.conftest import FakeProvider, tool_response
from listpilot.core.errors import UpstreamFailure
from listpilot.services.agent import MAX_ITERATIONS_REPLY, Agent, build_system_prompt
from listpilot.services.llm.base import LLMResponse, Message, ToolCall, Usage
from listpilot.services.llm.gemini import _to_contents


def _history(text="hi"):
    return [Message(role="user", content=text)]


def test_text_answer_ends_the_loop(services, ctx):
    provider = FakeProvider([LLMResponse(content="Hello!", usage=Usage(10, 2, 12))])
    outcome = asyncio.run(Agent(provider, services.registry).run(_history(), ctx))

    assert outcome.content == "Hello!"
    assert outcome.iterations == 1
    assert outcome.tool_runs == []
    assert outcome.usage.total_tokens == 12
    assert provider.calls[0]["tools"][0]["name"] == "create_list"


def test_tool_results_are_fed_back(services, ctx):
    provider = FakeProvider([
        tool_response("create_list", {"title": "Errands"}),
        tool_response("add_item", {"list_ref": "Errands", "title": "post office"}, call_id="call_2"),
        LLMResponse(content="Added it."),
    ])
    outcome = asyncio.run(Agent(provider, services.registry).run(_history(), ctx))

    assert [r.call.name for r in outcome.tool_runs] == ["create_list", "add_item"]
    assert all(r.result.success for r in outcome.tool_runs)
    assert outcome.iterations == 3

    third_call = provider.calls[2]["messages"]
    assert [m.role for m in third_call] == ["user", "assistant", "tool", "assistant", "tool"]
    assert third_call[-1].tool_call_id == "call_2"


def test_iteration_cap(services, ctx):
    provider = FakeProvider([tool_response("list_lists", {}, call_id=f"call_{n}") for n in range(5)])
    outcome = asyncio.run(Agent(provider, services.registry, max_iterations=2).run(_history(), ctx))

    assert outcome.reached_limit
    assert outcome.content == MAX_ITERATIONS_REPLY
    assert len(outcome.tool_runs) == 2


def test_upstream_failure_propagates(services, ctx):
    provider = FakeProvider(error=UpstreamFailure("down"))
    with pytest.raises(UpstreamFailure):
        asyncio.run(Agent(provider, services.registry).run(_history(), ctx))


def test_system_prompt_names_focused_list(ctx):
    focused = ctx.for_conversation(1, "list-123")
    prompt = build_system_prompt(focused, "Q2 Roadshow")
    assert 'currently looking at the list "Q2 Roadshow" (id: list-123)' in prompt
    assert "currently looking" not in build_system_prompt(ctx)


def test_gemini_history_conversion():
    contents, system = _to_contents([
        Message(role="system", content="Earlier in this conversation: 2 messages, 0 tool results."),
        Message(role="user", content="make a list"),
        Message(role="assistant", content="", tool_calls=[ToolCall(id="c1", name="create_list", arguments={"title": "A"})]),
        Message(role="tool", content='{"success": true}', tool_call_id="c1", name="create_list"),
        Message(role="assistant", content="Done."),
    ])

    assert system.startswith("Earlier in this conversation")
    assert [c.role for c in contents] == ["user", "model", "user", "model"]
    assert contents[1].parts[0].function_call.name == "create_list"
    assert contents[2].parts[0].function_response.id == "c1"
