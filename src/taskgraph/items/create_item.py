"""Create a task or epic."""

from __future__ import annotations

import json
import logging
import sqlite3

from taskgraph.agent import AgentContext
from taskgraph.config import Config
from taskgraph.db import ensure_project, guarded, now_iso, transaction
from taskgraph.defaults import resolve_project
from taskgraph.errors import NotFoundError, StorageError
from taskgraph.history import EVENT_CREATED, record_event
from taskgraph.model import DEFAULT_PRIORITY, STATUS_OPEN, TYPE_TASK, Item

from . import _helpers

log = logging.getLogger(__name__)


@guarded
def create_item(
    conn: sqlite3.Connection,
    title: str,
    *,
    project: str | None = None,
    item_type: str = TYPE_TASK,
    description: str = "",
    priority: int = DEFAULT_PRIORITY,
    parent_id: str | None = None,
    actor: AgentContext | None = None,
    config: Config | None = None,
    template_id: str | None = None,
    step_index: int | None = None,
    variables: dict[str, str] | None = None,
    template_hash: str | None = None,
) -> Item:
    """Insert a new open item and record its ``created`` event.

    The id is ``<prefix>-<6 hex>``; a colliding id is regenerated a few times
    before giving up with StorageError.
    """
    config = config or Config()
    title = _helpers.validate_title(title)
    _helpers.validate_type(item_type)
    _helpers.validate_priority(priority)
    project = resolve_project(project, config.default_project)
    prefix = config.prefix_for(item_type)

    with transaction(conn):
        if parent_id and not _helpers.item_exists(conn, parent_id):
            raise NotFoundError(f"parent not found: {parent_id}")
        ensure_project(conn, project)

        now = now_iso()
        item_id = None
        for attempt in range(_helpers.ID_ATTEMPTS):
            candidate = _helpers.new_item_id(prefix)
            try:
                conn.execute(
                    "INSERT INTO items (id, project, type, title, description, status, priority, parent_id, "
                    "template_id, step_index, variables, template_hash, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        candidate, project, item_type, title, description or "", STATUS_OPEN, priority,
                        parent_id, template_id, step_index,
                        json.dumps(variables) if variables is not None else None,
                        template_hash, now, now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "items.id" not in str(exc):
                    raise
                log.debug("create_item: id collision on %s (attempt %s)", candidate, attempt + 1)
                continue
            item_id = candidate
            break
        if item_id is None:
            raise StorageError(f"could not allocate a unique {prefix} id after {_helpers.ID_ATTEMPTS} attempts")

        changes: dict[str, object] = {"title": title, "type": item_type, "priority": priority}
        if parent_id:
            changes["parent_id"] = parent_id
        if template_id:
            changes["template_id"] = template_id
        record_event(conn, item_id, project, EVENT_CREATED, changes, actor)
        return _helpers.fetch_item(conn, item_id)
