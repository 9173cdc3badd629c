"""Slash commands. Handled synchronously; every command produces a reply."""

import logging
import re
from dataclasses import dataclass
from typing import Any

from listpilot.core.context import TurnContext
from listpilot.services.conversations import ConversationService
from listpilot.services.lists import ListService, serialize_list
from listpilot.services.search import SearchService

logger = logging.getLogger(__name__)

COMMAND_PATTERN = re.compile(r"^\s*/([A-Za-z][\w-]*)(?:\s+(.*))?\s*$", re.S)

HELP_TEXT = """**Available Commands:**
- `/search <query>` - Search your lists and items
- `/browse` - Browse all available lists
- `/help` - Show this help message
- `/clear` - Clear chat history
- `/new` - Start a new conversation

**Tips:**
- Send a normal message to ask the assistant to create or update lists
- Refer to the list you're looking at as "this list"
- Use @name to mention a teammate and #list-name to reference a list"""

SEARCH_USAGE = "Please provide a search query. Example: /search budget"


@dataclass
class CommandReply:
    command: str
    content: str
    template_type: str | None = None
    template_data: dict[str, Any] | None = None
    new_conversation_id: int | None = None


def parse_command(content: str, command: str | None = None) -> tuple[str, str] | None:
    """(name, argument) for a command message, None for natural language.

    An explicit ``command`` wins over a leading slash in the content.
    """
    if command:
        return command.strip().lstrip("/").lower(), (content or "").strip()
    match = COMMAND_PATTERN.match(content or "")
    if not match:
        return None
    return match.group(1).lower(), (match.group(2) or "").strip()


class CommandRouter:
    def __init__(self, conversations: ConversationService, lists: ListService, search: SearchService):
        self.conversations = conversations
        self.lists = lists
        self.search_service = search
        self._handlers = {
            "search": self._search,
            "browse": self._browse,
            "help": self._help,
            "clear": self._clear,
            "new": self._new,
        }

    def handle(self, ctx: TurnContext, name: str, argument: str) -> CommandReply:
        handler = self._handlers.get(name)
        if handler is None:
            logger.info(f"Unknown command /{name} in conversation {ctx.conversation_id}")
            return CommandReply(
                command=name,
                content=f"Unknown command: /{name}. Type /help to see available commands.",
            )
        logger.info(f"Command /{name} in conversation {ctx.conversation_id}")
        return handler(ctx, argument)

    def _search(self, ctx: TurnContext, query: str) -> CommandReply:
        if not query:
            return CommandReply(command="search", content=SEARCH_USAGE)

        results = self.search_service.search(ctx, query)
        data: dict[str, Any] = {
            "query": query,
            "results": [r.as_dict() for r in results],
            "total_count": len(results),
            "search_type": "all",
        }
        if results:
            content = f'Found {len(results)} result{"s" if len(results) != 1 else ""} for "{query}".'
        else:
            data["suggestion"] = "Try a shorter or different search term, or /browse to see all your lists."
            content = f'No results found for "{query}". {data["suggestion"]}'
        return CommandReply(command="search", content=content, template_type="search_results", template_data=data)

    def _browse(self, ctx: TurnContext, argument: str) -> CommandReply:
        rows = self.lists.user_lists(ctx, roots_only=True, limit=50)
        lists = [serialize_list(task_list, total, done) for task_list, total, done in rows]
        if lists:
            content = f"You have {len(lists)} list{'s' if len(lists) != 1 else ''}."
        else:
            content = "You don't have any lists yet. Ask me to create one!"
        return CommandReply(
            command="browse",
            content=content,
            template_type="list_browser",
            template_data={"lists": lists, "total_count": len(lists)},
        )

    def _help(self, ctx: TurnContext, argument: str) -> CommandReply:
        return CommandReply(command="help", content=HELP_TEXT)

    def _clear(self, ctx: TurnContext, argument: str) -> CommandReply:
        removed = self.conversations.clear(ctx.conversation_id)
        logger.info(f"Cleared {removed} messages from conversation {ctx.conversation_id}")
        return CommandReply(command="clear", content="Chat history cleared.")

    def _new(self, ctx: TurnContext, argument: str) -> CommandReply:
        conv = self.conversations.create(ctx, title=argument or "New Conversation")
        return CommandReply(
            command="new",
            content=f"Started a new conversation (#{conv.id}).",
            template_data={"conversation_id": conv.id},
            new_conversation_id=conv.id,
        )
