"""Reference resolution for lists and items.

A reference may be an id, a title, a fragment of a title, a deictic phrase
("this list", "the current task") or nothing at all. Resolution tries, in order:

1. exact id among entities the user can access
2. deictic phrase -> focused list, then the most recent activity of that kind
3. exact title (case-insensitive)
4. fuzzy title match, best first
5. recent activity, when the reference is blank or generic

Nothing found returns ``None``. The resolver never raises for a miss.
"""

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from listpilot.core.context import TurnContext
from listpilot.models.conversation import ConversationActivity
from listpilot.models.lists import ListItem, TaskList
from listpilot.services.lists import accessible_lists_query, can_access, ordered_items

logger = logging.getLogger(__name__)

DEICTIC_LIST = re.compile(
    r"^\s*(?:this|current|the|that|my|same)\s+(?:current\s+)?(?:list|todo(?:\s*list)?|task\s*list|checklist|plan)\s*$",
    re.I,
)
DEICTIC_ITEM = re.compile(
    r"^\s*(?:this|current|the|that|last|same)\s+(?:item|task|entry|one)\s*$",
    re.I,
)
GENERIC_REFERENCES = {"it", "that", "this", "list", "item", "task", "one", "the list", "the item", "it please"}

FUZZY_MIN_SCORE = 0.5
RECENT_ACTIVITY_LIMIT = 50


@dataclass(frozen=True)
class Match:
    kind: str  # list | item
    id: str
    title: str
    strategy: str  # id | deictic | exact_title | fuzzy_title | recent


def _fuzzy_score(reference: str, title: str) -> float:
    ref, text = reference.lower(), title.lower()
    if ref in text:
        # Substring hits rank above pure similarity; tighter matches rank higher.
        return 1.0 + len(ref) / max(len(text), 1)
    return SequenceMatcher(None, ref, text).ratio()


def _rank(reference: str, candidates: list[tuple[str, str]]) -> tuple[str, str] | None:
    """Best (id, title) by fuzzy score; ties broken by title then id."""
    scored = [
        (score, title, entity_id)
        for entity_id, title in candidates
        if (score := _fuzzy_score(reference, title)) >= FUZZY_MIN_SCORE
    ]
    if not scored:
        return None
    scored.sort(key=lambda s: (-s[0], s[1].lower(), s[2]))
    _, title, entity_id = scored[0]
    return entity_id, title


class ReferenceResolver:
    def __init__(self, engine: Engine):
        self.engine = engine

    def resolve_list(self, ctx: TurnContext, reference: str | None) -> Match | None:
        text = (reference or "").strip()
        with Session(self.engine) as session:
            candidates = {
                task_list.id: task_list.title
                for task_list in session.exec(accessible_lists_query(ctx.user_id)).all()
            }

            if text in candidates:
                return Match("list", text, candidates[text], "id")

            if DEICTIC_LIST.match(text):
                found = self._recent_list(session, ctx, candidates)
                if found:
                    return Match("list", found, candidates[found], "deictic")

            if text:
                lowered = text.lower()
                exact = sorted(
                    (title, list_id) for list_id, title in candidates.items() if title.lower() == lowered
                )
                if exact:
                    title, list_id = exact[0]
                    return Match("list", list_id, title, "exact_title")

                if text.lower() not in GENERIC_REFERENCES and not DEICTIC_LIST.match(text):
                    ranked = _rank(text, list(candidates.items()))
                    if ranked:
                        return Match("list", ranked[0], ranked[1], "fuzzy_title")

            if not text or text.lower() in GENERIC_REFERENCES:
                found = self._recent_list(session, ctx, candidates)
                if found:
                    return Match("list", found, candidates[found], "recent")

        logger.debug(f"No list matched reference {reference!r} for user {ctx.user_id}")
        return None

    def resolve_item(self, ctx: TurnContext, reference: str | None, list_id: str | None = None) -> Match | None:
        """Resolve an item, optionally restricted to one list."""
        text = (reference or "").strip()
        with Session(self.engine) as session:
            if list_id is not None:
                task_list = session.get(TaskList, list_id)
                if not can_access(session, ctx.user_id, task_list):
                    return None
                list_ids = [list_id]
            else:
                list_ids = [t.id for t in session.exec(accessible_lists_query(ctx.user_id)).all()]

            items: list[ListItem] = []
            for lid in list_ids:
                items.extend(ordered_items(session, lid))
            candidates = {item.id: item.title for item in items}

            if text in candidates:
                return Match("item", text, candidates[text], "id")

            if DEICTIC_ITEM.match(text):
                found = self._recent_entity(session, ctx, "item", candidates)
                if found:
                    return Match("item", found, candidates[found], "deictic")

            if text:
                lowered = text.lower()
                exact = sorted((title, iid) for iid, title in candidates.items() if title.lower() == lowered)
                if exact:
                    title, item_id = exact[0]
                    return Match("item", item_id, title, "exact_title")

                if lowered not in GENERIC_REFERENCES and not DEICTIC_ITEM.match(text):
                    ranked = _rank(text, list(candidates.items()))
                    if ranked:
                        return Match("item", ranked[0], ranked[1], "fuzzy_title")

            if not text or text.lower() in GENERIC_REFERENCES:
                found = self._recent_entity(session, ctx, "item", candidates)
                if found:
                    return Match("item", found, candidates[found], "recent")

        logger.debug(f"No item matched reference {reference!r} for user {ctx.user_id}")
        return None

    def _recent_list(self, session: Session, ctx: TurnContext, candidates: dict[str, str]) -> str | None:
        if ctx.focused_list_id and ctx.focused_list_id in candidates:
            return ctx.focused_list_id
        found = self._recent_entity(session, ctx, "list", candidates)
        if found:
            return found
        # An item touched recently implies its list.
        for activity in self._recent_activity(session, ctx, "item"):
            item = session.get(ListItem, activity.entity_id)
            if item and item.list_id in candidates:
                return item.list_id
        return None

    def _recent_entity(self, session: Session, ctx: TurnContext, entity_type: str,
                       candidates: dict[str, str]) -> str | None:
        for activity in self._recent_activity(session, ctx, entity_type):
            if activity.entity_id in candidates:
                return activity.entity_id
        return None

    def _recent_activity(self, session: Session, ctx: TurnContext, entity_type: str) -> list[ConversationActivity]:
        stmt = select(ConversationActivity).where(
            ConversationActivity.user_id == ctx.user_id,
            ConversationActivity.entity_type == entity_type,
        )
        if ctx.conversation_id is not None:
            # Prefer this conversation's activity, then fall back to the user's.
            scoped = session.exec(
                stmt.where(ConversationActivity.conversation_id == ctx.conversation_id)
                .order_by(col(ConversationActivity.created_at).desc(), col(ConversationActivity.id).desc())
                .limit(RECENT_ACTIVITY_LIMIT)
            ).all()
            if scoped:
                return list(scoped)
        return list(session.exec(
            stmt.order_by(col(ConversationActivity.created_at).desc(), col(ConversationActivity.id).desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        ).all())
