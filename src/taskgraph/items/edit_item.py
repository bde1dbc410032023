"""Field edits: title, description, priority, parent. Each leaves a history event."""

from __future__ import annotations

import sqlite3

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, transaction
from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.history import (
    EVENT_DESCRIPTION_CHANGED,
    EVENT_PARENT_CHANGED,
    EVENT_PRIORITY_CHANGED,
    EVENT_TITLE_CHANGED,
    record_event,
)
from taskgraph.model import Item

from . import _helpers


@guarded
def set_title(conn: sqlite3.Connection, item_id: str, title: str, actor: AgentContext | None = None) -> Item:
    title = _helpers.validate_title(title)
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _helpers.update_fields(conn, item.id, title=title)
        record_event(conn, item.id, item.project, EVENT_TITLE_CHANGED, {"from": item.title, "to": title}, actor)
        return _helpers.fetch_item(conn, item.id)


@guarded
def set_description(conn: sqlite3.Connection, item_id: str, description: str, actor: AgentContext | None = None) -> Item:
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _helpers.update_fields(conn, item.id, description=description or "")
        record_event(
            conn, item.id, item.project, EVENT_DESCRIPTION_CHANGED,
            {"mode": "replace", "length": len(description or "")}, actor,
        )
        return _helpers.fetch_item(conn, item.id)


@guarded
def append_description(conn: sqlite3.Connection, item_id: str, text: str, actor: AgentContext | None = None) -> Item:
    """Append text to the description, separated by a blank line."""
    if not text:
        raise ValidationError("nothing to append")
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        merged = f"{item.description}\n\n{text}" if item.description else text
        _helpers.update_fields(conn, item.id, description=merged)
        record_event(
            conn, item.id, item.project, EVENT_DESCRIPTION_CHANGED,
            {"mode": "append", "appended": text}, actor,
        )
        return _helpers.fetch_item(conn, item.id)


@guarded
def set_priority(conn: sqlite3.Connection, item_id: str, priority: int, actor: AgentContext | None = None) -> Item:
    _helpers.validate_priority(priority)
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _helpers.update_fields(conn, item.id, priority=priority)
        record_event(conn, item.id, item.project, EVENT_PRIORITY_CHANGED, {"from": item.priority, "to": priority}, actor)
        return _helpers.fetch_item(conn, item.id)


@guarded
def set_parent(conn: sqlite3.Connection, item_id: str, parent_id: str, actor: AgentContext | None = None) -> Item:
    """Attach an item to a parent. Only existence is checked, not the parent's type."""
    if parent_id == item_id:
        raise ValidationError(f"{item_id} cannot be its own parent")
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        if not _helpers.item_exists(conn, parent_id):
            raise NotFoundError(f"parent not found: {parent_id}")
        _helpers.update_fields(conn, item.id, parent_id=parent_id)
        record_event(conn, item.id, item.project, EVENT_PARENT_CHANGED, {"from": item.parent_id, "to": parent_id}, actor)
        return _helpers.fetch_item(conn, item.id)


@guarded
def clear_parent(conn: sqlite3.Connection, item_id: str, actor: AgentContext | None = None) -> Item:
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        if item.parent_id is None:
            return item
        _helpers.update_fields(conn, item.id, parent_id=None)
        record_event(conn, item.id, item.project, EVENT_PARENT_CHANGED, {"from": item.parent_id, "to": None}, actor)
        return _helpers.fetch_item(conn, item.id)
