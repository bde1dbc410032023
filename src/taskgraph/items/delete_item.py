"""Cascading delete."""

from __future__ import annotations

import sqlite3

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, transaction
from taskgraph.history import EVENT_DELETED, record_event

from . import _helpers


@guarded
def delete_item(conn: sqlite3.Connection, item_id: str, actor: AgentContext | None = None) -> dict[str, object]:
    """Remove an item with its edges (both directions), logs and label links.

    Children are detached (parent_id set to NULL), not deleted. History rows
    stay; a ``deleted`` event is appended.
    """
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        edges = conn.execute(
            "DELETE FROM deps WHERE item_id = ? OR depends_on = ?", (item.id, item.id)
        ).rowcount
        logs = conn.execute("DELETE FROM logs WHERE item_id = ?", (item.id,)).rowcount
        labels = conn.execute("DELETE FROM item_labels WHERE item_id = ?", (item.id,)).rowcount
        detached = conn.execute(
            "UPDATE items SET parent_id = NULL WHERE parent_id = ?", (item.id,)
        ).rowcount
        conn.execute("UPDATE learnings SET task_id = NULL WHERE task_id = ?", (item.id,))
        conn.execute("DELETE FROM items WHERE id = ?", (item.id,))
        record_event(
            conn, item.id, item.project, EVENT_DELETED,
            {"title": item.title, "type": item.type, "status": item.status}, actor,
        )
    return {
        "deleted": item.id,
        "edges_removed": edges,
        "logs_removed": logs,
        "labels_removed": labels,
        "children_detached": detached,
    }
