"""Keyword search across the lists and items a user can access.

Every searchable kind is presented through the same SearchDocument shape, built
by the factory registered for that kind.
"""

import logging
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from listpilot.core.context import TurnContext
from listpilot.models.lists import ListItem, TaskList
from listpilot.services.lists import accessible_lists_query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchDocument:
    kind: str  # list | item
    id: str
    title: str
    description: str
    reference: str  # canonical "kind:id" reference

    def as_dict(self) -> dict:
        return {
            "kind": self.kind,
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "reference": self.reference,
        }


def _list_document(task_list: TaskList) -> SearchDocument:
    return SearchDocument(
        kind="list",
        id=task_list.id,
        title=task_list.title,
        description=task_list.description or "",
        reference=f"list:{task_list.id}",
    )


def _item_document(item: ListItem) -> SearchDocument:
    return SearchDocument(
        kind="item",
        id=item.id,
        title=item.title,
        description=item.description or "",
        reference=f"item:{item.id}",
    )


DOCUMENT_FACTORIES: dict[str, Callable[..., SearchDocument]] = {
    "list": _list_document,
    "item": _item_document,
}


def to_document(kind: str, entity) -> SearchDocument:
    return DOCUMENT_FACTORIES[kind](entity)


class SearchService:
    def __init__(self, engine: Engine):
        self.engine = engine

    def search(self, ctx: TurnContext, query: str, limit: int = 20) -> list[SearchDocument]:
        """Case-insensitive substring match on title and description, lists first."""
        term = (query or "").strip()
        if not term:
            return []
        pattern = f"%{term}%"

        with Session(self.engine) as session:
            accessible = accessible_lists_query(ctx.user_id).subquery()
            lists = session.exec(
                select(TaskList)
                .where(
                    col(TaskList.id).in_(select(accessible.c.id)),
                    or_(col(TaskList.title).ilike(pattern), col(TaskList.description).ilike(pattern)),
                )
                .order_by(TaskList.title, TaskList.id)
                .limit(limit)
            ).all()
            items = session.exec(
                select(ListItem)
                .where(
                    col(ListItem.list_id).in_(select(accessible.c.id)),
                    or_(col(ListItem.title).ilike(pattern), col(ListItem.description).ilike(pattern)),
                )
                .order_by(ListItem.title, ListItem.id)
                .limit(limit)
            ).all()

        results = [to_document("list", t) for t in lists] + [to_document("item", i) for i in items]
        logger.debug(f"Search {term!r} for user {ctx.user_id}: {len(results)} results")
        return results[:limit]
