"""List and item persistence with the structural invariants enforced.

- Item positions in a list are unique and contiguous from zero.
- The parent chain of a list is acyclic.
- Positional changes are serialized per list.

Every public method runs in its own session and commits or rolls back as a unit.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from listpilot.core.context import TurnContext
from listpilot.core.errors import InvariantViolation, ResolutionFailure, ValidationError
from listpilot.models.conversation import ConversationActivity, utcnow
from listpilot.models.lists import (
    ITEM_STATUSES,
    ITEM_TYPES,
    LIST_STATUSES,
    PRIORITIES,
    ListItem,
    ListShare,
    TaskList,
)

logger = logging.getLogger(__name__)

MAX_PARENT_DEPTH = 64

_locks_guard = threading.Lock()
_list_locks: dict[str, tuple[threading.Lock, int]] = {}


@contextmanager
def list_lock(list_id: str) -> Iterator[None]:
    """Serialize positional writes on a single list. Idle locks are dropped."""
    with _locks_guard:
        lock, holders = _list_locks.get(list_id) or (threading.Lock(), 0)
        _list_locks[list_id] = (lock, holders + 1)
    try:
        with lock:
            yield
    finally:
        with _locks_guard:
            lock, holders = _list_locks[list_id]
            if holders == 1:
                del _list_locks[list_id]
            else:
                _list_locks[list_id] = (lock, holders - 1)


def accessible_lists_query(user_id: int, include_archived: bool = False):
    shared_ids = select(ListShare.list_id).where(ListShare.user_id == user_id)
    stmt = select(TaskList).where(or_(TaskList.user_id == user_id, col(TaskList.id).in_(shared_ids)))
    if not include_archived:
        stmt = stmt.where(TaskList.status != "archived")
    return stmt


def can_access(session: Session, user_id: int, task_list: TaskList | None) -> bool:
    if task_list is None:
        return False
    if task_list.user_id == user_id:
        return True
    share = session.exec(
        select(ListShare).where(ListShare.list_id == task_list.id, ListShare.user_id == user_id)
    ).first()
    return share is not None


def ordered_items(session: Session, list_id: str) -> list[ListItem]:
    return list(session.exec(
        select(ListItem).where(ListItem.list_id == list_id).order_by(ListItem.position, ListItem.created_at)
    ).all())


def serialize_list(task_list: TaskList, total: int | None = None, completed: int | None = None) -> dict:
    data = {
        "id": task_list.id,
        "title": task_list.title,
        "description": task_list.description,
        "status": task_list.status,
        "list_type": task_list.list_type,
        "parent_id": task_list.parent_id,
    }
    if total is not None:
        data["item_count"] = total
        data["completed_count"] = completed or 0
    return data


def serialize_item(item: ListItem) -> dict:
    return {
        "id": item.id,
        "list_id": item.list_id,
        "title": item.title,
        "description": item.description,
        "status": item.status,
        "priority": item.priority,
        "item_type": item.item_type,
        "position": item.position,
    }


def _renumber(session: Session, items: list[ListItem]) -> None:
    # Two passes so the (list_id, position) constraint never sees a duplicate mid-update.
    for index, item in enumerate(items):
        item.position = -(index + 1)
        session.add(item)
    session.flush()
    now = utcnow()
    for index, item in enumerate(items):
        item.position = index
        item.updated_at = now
        session.add(item)
    session.flush()


def _clean_title(title: str | None, what: str = "Title") -> str:
    value = (title or "").strip()
    if not value:
        raise ValidationError(f"{what} is required", f"{what} is required.")
    if len(value) > 255:
        raise ValidationError(f"{what} too long", f"{what} must be 255 characters or fewer.")
    return value


def _check_choice(value: str, allowed: tuple[str, ...], what: str) -> str:
    if value not in allowed:
        raise ValidationError(f"invalid {what}: {value}", f"{what.capitalize()} must be one of: {', '.join(allowed)}.")
    return value


class ListService:
    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise InvariantViolation(f"integrity error: {e.orig}") from e
            except Exception:
                session.rollback()
                raise

    def _track(self, session: Session, ctx: TurnContext | None, action: str, entity_type: str, entity_id: str) -> None:
        if ctx is None:
            return
        session.add(ConversationActivity(
            user_id=ctx.user_id,
            conversation_id=ctx.conversation_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
        ))

    def _writable_list(self, session: Session, ctx: TurnContext, list_id: str) -> TaskList:
        task_list = session.get(TaskList, list_id)
        if not task_list or not can_access(session, ctx.user_id, task_list):
            raise ResolutionFailure(f"list {list_id} not accessible to user {ctx.user_id}")
        if task_list.user_id != ctx.user_id:
            share = session.exec(
                select(ListShare).where(ListShare.list_id == list_id, ListShare.user_id == ctx.user_id)
            ).first()
            if not share or share.permission != "collaborate":
                raise ValidationError(
                    f"user {ctx.user_id} has read-only access to {list_id}",
                    "You only have read access to that list.",
                )
        return task_list

    # Lists

    def create_list(
        self,
        ctx: TurnContext,
        title: str,
        description: str | None = None,
        items: list[dict] | None = None,
        parent_id: str | None = None,
        list_type: str = "personal",
    ) -> TaskList:
        with self._session() as session:
            task_list = self._insert_list(session, ctx, title, description, items or [], parent_id, list_type)
        logger.info(f"Created list {task_list.id} '{task_list.title}' for user {ctx.user_id}")
        return task_list

    def create_tree(self, ctx: TurnContext, root: dict, children: list[dict]) -> tuple[TaskList, list[TaskList]]:
        """Create a root list and its child lists in one transaction.

        ``root`` and each child are dicts with title, description and items.
        """
        with self._session() as session:
            root_list = self._insert_list(
                session, ctx, root["title"], root.get("description"), root.get("items", []),
                None, root.get("list_type", "personal"),
            )
            created = [
                self._insert_list(
                    session, ctx, child["title"], child.get("description"), child.get("items", []),
                    root_list.id, root_list.list_type,
                )
                for child in children
            ]
        logger.info(f"Created list tree {root_list.id} with {len(created)} children for user {ctx.user_id}")
        return root_list, created

    def _insert_list(
        self,
        session: Session,
        ctx: TurnContext,
        title: str,
        description: str | None,
        items: list[dict],
        parent_id: str | None,
        list_type: str,
    ) -> TaskList:
        if parent_id is not None:
            self._writable_list(session, ctx, parent_id)
        task_list = TaskList(
            user_id=ctx.user_id,
            organization_id=ctx.organization_id,
            parent_id=parent_id,
            title=_clean_title(title),
            description=(description or "").strip() or None,
            list_type=_check_choice(list_type, ("personal", "professional"), "list type"),
        )
        session.add(task_list)
        session.flush()
        for position, data in enumerate(items):
            session.add(self._new_item(task_list.id, position, data))
        session.flush()
        self._track(session, ctx, "list_created", "list", task_list.id)
        return task_list

    def _new_item(self, list_id: str, position: int, data: dict) -> ListItem:
        return ListItem(
            list_id=list_id,
            position=position,
            title=_clean_title(data.get("title"), "Item title"),
            description=(data.get("description") or "").strip() or None,
            priority=_check_choice(data.get("priority") or "medium", PRIORITIES, "priority"),
            item_type=_check_choice(data.get("item_type") or "task", ITEM_TYPES, "item type"),
        )

    def get_list(self, ctx: TurnContext, list_id: str) -> TaskList:
        with self._session() as session:
            task_list = session.get(TaskList, list_id)
            if not can_access(session, ctx.user_id, task_list):
                raise ResolutionFailure(f"list {list_id} not accessible to user {ctx.user_id}")
            self._track(session, ctx, "list_viewed", "list", list_id)
            return task_list

    def title_of(self, list_id: str) -> str | None:
        with Session(self.engine) as session:
            task_list = session.get(TaskList, list_id)
            return task_list.title if task_list else None

    def owner_of(self, list_id: str) -> int | None:
        with Session(self.engine) as session:
            task_list = session.get(TaskList, list_id)
            return task_list.user_id if task_list else None

    def user_lists(self, ctx: TurnContext, query: str | None = None, status: str | None = None,
                   roots_only: bool = False, limit: int = 20) -> list[tuple[TaskList, int, int]]:
        """Accessible lists, newest first, with (total, completed) item counts."""
        with self._session() as session:
            stmt = accessible_lists_query(ctx.user_id, include_archived=status == "archived")
            if status:
                stmt = stmt.where(TaskList.status == _check_choice(status, LIST_STATUSES, "status"))
            if roots_only:
                stmt = stmt.where(col(TaskList.parent_id).is_(None))
            if query:
                pattern = f"%{query.strip()}%"
                stmt = stmt.where(or_(col(TaskList.title).ilike(pattern), col(TaskList.description).ilike(pattern)))
            lists = session.exec(stmt.order_by(col(TaskList.updated_at).desc()).limit(limit)).all()
            return [(task_list, *self._counts(session, task_list.id)) for task_list in lists]

    def _counts(self, session: Session, list_id: str) -> tuple[int, int]:
        items = ordered_items(session, list_id)
        return len(items), sum(1 for item in items if item.status == "completed")

    def children_of(self, list_id: str) -> list[TaskList]:
        with self._session() as session:
            return list(session.exec(
                select(TaskList).where(TaskList.parent_id == list_id).order_by(TaskList.created_at, TaskList.title)
            ).all())

    def set_parent(self, ctx: TurnContext, list_id: str, parent_id: str | None) -> TaskList:
        """Nest a list under another list, or detach it with ``parent_id=None``."""
        with self._session() as session:
            task_list = self._writable_list(session, ctx, list_id)
            if parent_id is not None:
                self._writable_list(session, ctx, parent_id)
                ancestor_id: str | None = parent_id
                depth = 0
                while ancestor_id is not None:
                    if ancestor_id == list_id:
                        raise ValidationError(
                            f"nesting {list_id} under {parent_id} creates a cycle",
                            "A list can't be nested inside itself or one of its own sub-lists.",
                        )
                    depth += 1
                    if depth > MAX_PARENT_DEPTH:
                        raise InvariantViolation(f"parent chain of {parent_id} exceeds {MAX_PARENT_DEPTH}")
                    ancestor = session.get(TaskList, ancestor_id)
                    ancestor_id = ancestor.parent_id if ancestor else None
            task_list.parent_id = parent_id
            task_list.updated_at = utcnow()
            session.add(task_list)
            self._track(session, ctx, "list_updated", "list", list_id)
            return task_list

    # Items

    def items(self, ctx: TurnContext, list_id: str, status: str | None = None) -> list[ListItem]:
        with self._session() as session:
            task_list = session.get(TaskList, list_id)
            if not can_access(session, ctx.user_id, task_list):
                raise ResolutionFailure(f"list {list_id} not accessible to user {ctx.user_id}")
            result = ordered_items(session, list_id)
            if status:
                _check_choice(status, ITEM_STATUSES, "status")
                result = [item for item in result if item.status == status]
            self._track(session, ctx, "list_viewed", "list", list_id)
            return result

    def add_item(
        self,
        ctx: TurnContext,
        list_id: str,
        title: str,
        description: str | None = None,
        priority: str = "medium",
        item_type: str = "task",
    ) -> ListItem:
        with list_lock(list_id), self._session() as session:
            task_list = self._writable_list(session, ctx, list_id)
            position = len(ordered_items(session, list_id))
            item = self._new_item(list_id, position, {
                "title": title, "description": description, "priority": priority, "item_type": item_type,
            })
            session.add(item)
            task_list.updated_at = utcnow()
            session.add(task_list)
            session.flush()
            self._track(session, ctx, "item_added", "item", item.id)
            return item

    def complete_item(self, ctx: TurnContext, item_id: str) -> ListItem:
        with self._session() as session:
            item = session.get(ListItem, item_id)
            if item is None:
                raise ResolutionFailure(f"item {item_id} not found", "I couldn't find that item.")
            task_list = self._writable_list(session, ctx, item.list_id)
            if item.status != "completed":
                item.status = "completed"
                item.completed_at = utcnow()
                item.updated_at = item.completed_at
                task_list.updated_at = item.completed_at
                session.add(item)
                session.add(task_list)
            self._track(session, ctx, "item_completed", "item", item.id)
            return item

    def remove_item(self, ctx: TurnContext, item_id: str) -> None:
        list_id = self._list_id_of(item_id)
        with list_lock(list_id), self._session() as session:
            self._writable_list(session, ctx, list_id)
            item = session.get(ListItem, item_id)
            if item is None or item.list_id != list_id:
                raise ResolutionFailure(f"item {item_id} not found", "I couldn't find that item.")
            session.delete(item)
            session.flush()
            _renumber(session, ordered_items(session, list_id))
            self._track(session, ctx, "item_removed", "list", list_id)

    def move_item(self, ctx: TurnContext, item_id: str, new_position: int) -> ListItem:
        list_id = self._list_id_of(item_id)
        with list_lock(list_id), self._session() as session:
            self._writable_list(session, ctx, list_id)
            current = ordered_items(session, list_id)
            moving = next((i for i in current if i.id == item_id), None)
            if moving is None:
                raise ResolutionFailure(f"item {item_id} not found", "I couldn't find that item.")
            remaining = [i for i in current if i.id != item_id]
            target = max(0, min(new_position, len(remaining)))
            remaining.insert(target, moving)
            _renumber(session, remaining)
            self._track(session, ctx, "item_moved", "item", item_id)
            return moving

    def _list_id_of(self, item_id: str) -> str:
        with Session(self.engine) as session:
            item = session.get(ListItem, item_id)
            if item is None:
                raise ResolutionFailure(f"item {item_id} not found", "I couldn't find that item.")
            return item.list_id
