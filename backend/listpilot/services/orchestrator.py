"""Per-turn orchestration.

submit() is the request path: screen, persist, moderate, route. Commands finish
synchronously; natural-language turns leave a pending placeholder and go to the
work queue. process_turn() is the worker path: run the agent, persist tool and
assistant messages, notify live viewers.

Turn states only move forward:

    received -> screened -> routed -> executing -> completed
           \\         \\         \\          \\-> failed
            \\-> blocked / failed
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from listpilot.core.context import TurnContext
from listpilot.core.errors import (
    InvariantViolation,
    PipelineError,
    SecurityRejection,
    UpstreamFailure,
)
from listpilot.models.conversation import ChatMessage
from listpilot.services.agent import Agent, build_system_prompt
from listpilot.services.broadcast import BroadcastDispatcher
from listpilot.services.commands import CommandRouter, parse_command
from listpilot.services.conversation_state import ConversationStateManager
from listpilot.services.conversations import ConversationService, serialize_message
from listpilot.services.lists import ListService
from listpilot.services.llm.base import Message
from listpilot.services.mentions import MentionParser
from listpilot.services.security import SecurityGateway
from listpilot.services.worker import TurnJob, TurnQueue

logger = logging.getLogger(__name__)

HISTORY_ROLES = ("user", "assistant")
HIDDEN_TEMPLATES = ("pending", "error")


class TurnState(str, Enum):
    RECEIVED = "received"
    SCREENED = "screened"
    ROUTED = "routed"
    EXECUTING = "executing"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


TRANSITIONS: dict[TurnState, set[TurnState]] = {
    TurnState.RECEIVED: {TurnState.SCREENED, TurnState.BLOCKED, TurnState.FAILED},
    TurnState.SCREENED: {TurnState.ROUTED, TurnState.BLOCKED, TurnState.FAILED},
    TurnState.ROUTED: {TurnState.EXECUTING, TurnState.COMPLETED, TurnState.FAILED},
    TurnState.EXECUTING: {TurnState.COMPLETED, TurnState.FAILED},
    TurnState.COMPLETED: set(),
    TurnState.BLOCKED: set(),
    TurnState.FAILED: set(),
}


class Turn:
    def __init__(self, state: TurnState = TurnState.RECEIVED):
        self.state = state
        self.trail = [state.value]

    def advance(self, new_state: TurnState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvariantViolation(f"illegal turn transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.trail.append(new_state.value)

    @property
    def finished(self) -> bool:
        return not TRANSITIONS[self.state]


@dataclass
class TurnOutcome:
    status: str  # completed | pending | blocked | failed
    conversation_id: int | None = None
    message_id: int | None = None
    placeholder_id: int | None = None
    reply: dict[str, Any] | None = None
    new_conversation_id: int | None = None
    trail: list[str] = field(default_factory=list)


class ConversationOrchestrator:
    def __init__(
        self,
        conversations: ConversationService,
        gateway: SecurityGateway,
        mentions: MentionParser,
        router: CommandRouter,
        queue: TurnQueue,
        agent: Agent,
        state: ConversationStateManager,
        dispatcher: BroadcastDispatcher,
        lists: ListService,
    ):
        self.conversations = conversations
        self.gateway = gateway
        self.mentions = mentions
        self.router = router
        self.queue = queue
        self.agent = agent
        self.state = state
        self.dispatcher = dispatcher
        self.lists = lists

    # Request path

    async def submit(
        self,
        ctx: TurnContext,
        content: str,
        conversation_id: int | None = None,
        command: str | None = None,
    ) -> TurnOutcome:
        """Handle one inbound message.

        ConversationNotFound and ConversationClosed propagate; everything after
        the conversation is known ends in an outcome.
        """
        title = None
        if conversation_id is not None:
            conv = self.conversations.get_open(ctx, conversation_id)
        else:
            # Titled from the content only once it has passed screening and moderation.
            conv = self.conversations.create(ctx)
            title = (content or "").strip()[:80]
        ctx = ctx.for_conversation(conv.id, conv.focused_list_id)
        turn = Turn()

        try:
            return await self._run_submit(ctx, turn, content or "", command, title)
        except Exception as e:
            if isinstance(e, PipelineError):
                logger.error(f"Turn failed in conversation {ctx.conversation_id}: {type(e).__name__}: {e.detail}")
            else:
                logger.exception(f"Turn failed in conversation {ctx.conversation_id}")
            if not turn.finished:
                turn.advance(TurnState.FAILED)
            reply = self._save_failure(ctx.conversation_id, UpstreamFailure.default_user_message)
            self._record_turn(ctx.conversation_id, None, turn)
            return TurnOutcome(
                status="failed",
                conversation_id=ctx.conversation_id,
                reply=serialize_message(reply) if reply else None,
                trail=turn.trail,
            )

    async def _run_submit(
        self, ctx: TurnContext, turn: Turn, content: str, command: str | None, title: str | None = None,
    ) -> TurnOutcome:
        conversation_id = ctx.conversation_id

        injection = self.gateway.screen(content, self._context_titles(ctx))
        if injection.is_high:
            self.gateway.record_violation(
                violation_type="prompt_injection",
                action_taken="blocked",
                detected_patterns=injection.patterns,
                risk_score=injection.risk_score,
                details=f"risk_level={injection.risk_level}",
                conversation_id=conversation_id,
                user_id=ctx.user_id,
                organization_id=ctx.organization_id,
            )
            self.gateway.check_auto_archive(conversation_id, ctx.organization_id)
            turn.advance(TurnState.BLOCKED)
            self._record_turn(conversation_id, None, turn)
            return TurnOutcome(
                status="blocked",
                conversation_id=conversation_id,
                reply={"role": "system", "content": SecurityRejection.default_user_message},
                trail=turn.trail,
            )
        if injection.detected:
            self.gateway.record_violation(
                violation_type="prompt_injection",
                action_taken="warned",
                detected_patterns=injection.patterns,
                risk_score=injection.risk_score,
                details=f"risk_level={injection.risk_level}",
                conversation_id=conversation_id,
                user_id=ctx.user_id,
                organization_id=ctx.organization_id,
            )
        turn.advance(TurnState.SCREENED)

        user_message = self.conversations.save_message(
            conversation_id, "user", content,
            user_id=ctx.user_id,
            meta=self.mentions.parse(ctx, content),
        )

        try:
            moderation = await self.gateway.moderate(content)
        except UpstreamFailure as e:
            turn.advance(TurnState.FAILED)
            reply = self._save_failure(conversation_id, e.user_message)
            self._record_turn(conversation_id, user_message.id, turn)
            return TurnOutcome(
                status="failed",
                conversation_id=conversation_id,
                message_id=user_message.id,
                reply=serialize_message(reply) if reply else None,
                trail=turn.trail,
            )

        if moderation.flagged:
            self.conversations.update_message(user_message.id, blocked=True)
            self.gateway.record_violation(
                violation_type=moderation.violation_type,
                action_taken="blocked",
                detected_patterns=moderation.flagged_categories,
                risk_score=max(moderation.scores.values(), default=0.0),
                moderation_scores=moderation.scores,
                details="content moderation",
                message_id=user_message.id,
                conversation_id=conversation_id,
                user_id=ctx.user_id,
                organization_id=ctx.organization_id,
            )
            self.gateway.check_auto_archive(conversation_id, ctx.organization_id)
            reply = self.conversations.save_message(
                conversation_id, "system", SecurityRejection.default_user_message, template_type="error",
            )
            turn.advance(TurnState.BLOCKED)
            self._record_turn(conversation_id, user_message.id, turn)
            return TurnOutcome(
                status="blocked",
                conversation_id=conversation_id,
                message_id=user_message.id,
                reply=serialize_message(reply),
                trail=turn.trail,
            )

        if title:
            self.conversations.rename(conversation_id, title)

        turn.advance(TurnState.ROUTED)
        parsed = parse_command(content, command)

        if parsed is not None:
            name, argument = parsed
            result = self.router.handle(ctx, name, argument)
            reply = self.conversations.save_message(
                conversation_id, "system", result.content,
                template_type=result.template_type,
                template_data=result.template_data,
                meta={"command": name},
            )
            turn.advance(TurnState.COMPLETED)
            self.conversations.touch(conversation_id)
            self._record_turn(conversation_id, user_message.id, turn)
            return TurnOutcome(
                status="completed",
                conversation_id=conversation_id,
                message_id=user_message.id,
                reply=serialize_message(reply),
                new_conversation_id=result.new_conversation_id,
                trail=turn.trail,
            )

        placeholder = self.conversations.save_message(
            conversation_id, "assistant", "", template_type="pending", meta={"reply_to": user_message.id},
        )
        self.queue.enqueue(TurnJob(
            message_id=user_message.id,
            conversation_id=conversation_id,
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            placeholder_id=placeholder.id,
            focused_list_id=ctx.focused_list_id,
        ))
        turn.advance(TurnState.EXECUTING)
        self.conversations.touch(conversation_id)
        self._record_turn(conversation_id, user_message.id, turn)
        return TurnOutcome(
            status="pending",
            conversation_id=conversation_id,
            message_id=user_message.id,
            placeholder_id=placeholder.id,
            reply=serialize_message(placeholder),
            trail=turn.trail,
        )

    # Worker path

    async def process_turn(self, job: TurnJob) -> None:
        ctx = TurnContext(
            user_id=job.user_id,
            organization_id=job.organization_id,
            conversation_id=job.conversation_id,
            focused_list_id=job.focused_list_id,
        )
        turn = Turn(TurnState.EXECUTING)

        try:
            history = self._agent_history(job)
            titles = self._context_titles(ctx)
            outcome = await self.agent.run(
                history, ctx, system_prompt=build_system_prompt(ctx, titles[0] if titles else None),
            )
        except Exception as e:
            if isinstance(e, UpstreamFailure):
                logger.error(f"Turn {job.message_id} failed upstream: {e.detail}")
            else:
                logger.exception(f"Turn {job.message_id} failed")
            await self.fail_turn(job)
            return

        new_ids: list[int] = []
        used_call_ids = self.conversations.tool_call_ids(job.conversation_id)
        for run in outcome.tool_runs:
            call_id = run.call.id
            while call_id in used_call_ids:
                call_id = f"{call_id}-{len(used_call_ids)}"
            used_call_ids.add(call_id)
            tool_msg = self.conversations.save_message(
                job.conversation_id, "tool", json.dumps(run.result.to_dict(), default=str),
                tool_call_id=call_id,
                tool_name=run.call.name,
                meta={"arguments": run.call.arguments, "success": run.result.success},
            )
            new_ids.append(tool_msg.id)

        reply = self.conversations.save_message(
            job.conversation_id, "assistant", outcome.content or "Done.",
            meta={
                "reply_to": job.message_id,
                "iterations": outcome.iterations,
                "tool_calls": len(outcome.tool_runs),
                "usage": {
                    "prompt_tokens": outcome.usage.prompt_tokens,
                    "completion_tokens": outcome.usage.completion_tokens,
                    "total_tokens": outcome.usage.total_tokens,
                },
            },
        )
        new_ids.append(reply.id)
        self._resolve_placeholder(job.placeholder_id, reply.id)

        turn.advance(TurnState.COMPLETED)
        self.conversations.touch(job.conversation_id)
        self._record_turn(job.conversation_id, job.message_id, turn)
        self.state.evaluate(job.conversation_id)
        logger.info(
            f"Turn {job.message_id} completed: {len(outcome.tool_runs)} tool calls, "
            f"{outcome.usage.total_tokens} tokens"
        )
        await self.dispatcher.turn_completed(job.conversation_id, job.placeholder_id, new_ids, "completed")

    async def fail_turn(self, job: TurnJob) -> None:
        """Surface a generic failure for a turn that could not complete. Safe to call twice."""
        placeholder = self.conversations.get_message(job.placeholder_id)
        if placeholder and (placeholder.meta or {}).get("resolved_by"):
            return
        reply = self._save_failure(job.conversation_id, UpstreamFailure.default_user_message, reply_to=job.message_id)
        if reply is None:
            return
        self._resolve_placeholder(job.placeholder_id, reply.id)
        turn = Turn(TurnState.EXECUTING)
        turn.advance(TurnState.FAILED)
        self._record_turn(job.conversation_id, job.message_id, turn)
        await self.dispatcher.turn_completed(job.conversation_id, job.placeholder_id, [reply.id], "failed")

    # Helpers

    def _agent_history(self, job: TurnJob) -> list[Message]:
        summary, messages = self.state.history(job.conversation_id)
        history: list[Message] = []
        if summary:
            history.append(Message(role="system", content=summary))
        for m in messages:
            if not self._in_agent_history(m, job.message_id):
                continue
            history.append(Message(role=m.role, content=m.content))
        return history

    @staticmethod
    def _in_agent_history(m: ChatMessage, up_to_id: int) -> bool:
        return (
            m.id <= up_to_id
            and m.role in HISTORY_ROLES
            and not m.blocked
            and m.template_type not in HIDDEN_TEMPLATES
            and bool(m.content)
        )

    def _context_titles(self, ctx: TurnContext) -> tuple[str, ...]:
        if not ctx.focused_list_id:
            return ()
        title = self.lists.title_of(ctx.focused_list_id)
        return (title,) if title else ()

    def _save_failure(self, conversation_id: int, text: str, reply_to: int | None = None) -> ChatMessage | None:
        try:
            return self.conversations.save_message(
                conversation_id, "assistant", text, template_type="error",
                meta={"reply_to": reply_to} if reply_to else {},
            )
        except Exception:
            logger.exception(f"Could not persist failure message for conversation {conversation_id}")
            return None

    def _resolve_placeholder(self, placeholder_id: int, reply_id: int) -> None:
        placeholder = self.conversations.get_message(placeholder_id)
        if placeholder:
            self.conversations.update_message(placeholder_id, meta={**(placeholder.meta or {}), "resolved_by": reply_id})

    def _record_turn(self, conversation_id: int, message_id: int | None, turn: Turn) -> None:
        try:
            self.conversations.update_meta(
                conversation_id,
                last_turn={"message_id": message_id, "state": turn.state.value, "trail": turn.trail},
            )
        except Exception:
            logger.exception(f"Could not record turn state for conversation {conversation_id}")
