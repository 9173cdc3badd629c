"""Agent orchestration - handles multi-step tool use with the LLM."""

import json
import logging
from dataclasses import dataclass, field

from listpilot.core.config import settings
from listpilot.core.context import TurnContext
from listpilot.services.llm.base import BaseLLMProvider, Message, ToolCall, Usage
from listpilot.services.tools.base import ToolResult
from listpilot.services.tools.registry import ToolExecutor, ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT_BASE = """You are a list-planning assistant. You help the user create and manage
task lists: plans, checklists, itineraries, project breakdowns.

Available capabilities:
- Create a list, optionally with items
- Create a parent list with sub-lists (one per city, phase, or category)
- Add items to a list and mark items completed
- Show the user's lists and the items of a list

IMPORTANT RULES:
- When the user asks you to do something, IMMEDIATELY use the appropriate tool.
- Do NOT fabricate lists or items. Call list_lists or list_items to look them up.
- The user may refer to a list as "this list" or by part of its title; pass that phrase as list_ref.
- Multi-city or multi-phase requests: call create_list with the full request in the description, the
  sub-lists are generated for you.
- Be concise. After using a tool, briefly say what changed."""

MAX_ITERATIONS_REPLY = "I couldn't finish that in one go. Here's what I did so far; ask me to continue."


@dataclass
class ToolRun:
    call: ToolCall
    result: ToolResult


@dataclass
class AgentOutcome:
    content: str
    tool_runs: list[ToolRun] = field(default_factory=list)
    iterations: int = 0
    usage: Usage = field(default_factory=Usage)
    reached_limit: bool = False


def build_system_prompt(ctx: TurnContext, focused_title: str | None = None) -> str:
    prompt = SYSTEM_PROMPT_BASE
    if focused_title:
        prompt += f'\n\nThe user is currently looking at the list "{focused_title}" (id: {ctx.focused_list_id}).'
    return prompt


class Agent:
    """Agent that orchestrates LLM + tools for multi-step interactions."""

    def __init__(self, provider: BaseLLMProvider, registry: ToolRegistry, max_iterations: int | None = None):
        self.provider = provider
        self.registry = registry
        self.executor = ToolExecutor(registry)
        self.max_iterations = max_iterations or settings.agent_max_iterations

    async def run(self, history: list[Message], ctx: TurnContext, system_prompt: str | None = None) -> AgentOutcome:
        """Run the tool loop until the model answers in text or the iteration cap is hit.

        UpstreamFailure from the provider propagates. Tool failures do not: they
        are fed back to the model as failed results.
        """
        messages = list(history)
        declarations = self.registry.gemini_declarations()
        tool_names = [d["name"] for d in declarations]
        outcome = AgentOutcome(content="")

        for iteration in range(self.max_iterations):
            outcome.iterations = iteration + 1
            logger.info(
                f"LLM call (iteration {iteration + 1}/{self.max_iterations}) "
                f"conversation={ctx.conversation_id} messages={len(messages)} tools={', '.join(tool_names)}"
            )

            response = await self.provider.chat(messages, tools=declarations, system_prompt=system_prompt)
            outcome.usage.add(response.usage)
            logger.info(
                f"LLM usage: prompt={response.usage.prompt_tokens} "
                f"response={response.usage.completion_tokens} total={response.usage.total_tokens}"
            )

            if not response.tool_calls:
                outcome.content = response.content
                return outcome

            messages.append(Message(role="assistant", content=response.content, tool_calls=response.tool_calls))

            # In order: later calls may reference lists created by earlier ones.
            for call in response.tool_calls:
                logger.info(f"Tool call: {call.name}({call.arguments})")
                result = await self.executor.execute(call.name, call.arguments, ctx)
                outcome.tool_runs.append(ToolRun(call=call, result=result))
                messages.append(Message(
                    role="tool",
                    content=json.dumps(result.to_dict(), default=str),
                    tool_call_id=call.id,
                    name=call.name,
                ))

        logger.warning(f"Agent reached maximum iterations for conversation {ctx.conversation_id}")
        outcome.content = MAX_ITERATIONS_REPLY
        outcome.reached_limit = True
        return outcome
