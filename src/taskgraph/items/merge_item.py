"""Merge one item into another."""

from __future__ import annotations

import sqlite3
from collections import deque

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, now_iso, transaction
from taskgraph.errors import ValidationError
from taskgraph.history import EVENT_DELETED, EVENT_MERGED, record_event

from . import _helpers


def _dep_ids(conn: sqlite3.Connection, item_id: str) -> list[str]:
    rows = conn.execute("SELECT depends_on FROM deps WHERE item_id = ? ORDER BY rowid", (item_id,)).fetchall()
    return [r["depends_on"] for r in rows]


def _dependent_ids(conn: sqlite3.Connection, item_id: str) -> list[str]:
    rows = conn.execute("SELECT item_id FROM deps WHERE depends_on = ? ORDER BY rowid", (item_id,)).fetchall()
    return [r["item_id"] for r in rows]


def _check_no_self_dependency(conn: sqlite3.Connection, source_id: str, target_id: str) -> None:
    """Refuse a merge after which the target would depend on itself."""
    source_deps = _dep_ids(conn, source_id)
    if target_id in source_deps:
        raise ValidationError(f"cannot merge {source_id} into {target_id}: {source_id} depends on {target_id}")
    if target_id in _dependent_ids(conn, source_id):
        raise ValidationError(f"cannot merge {source_id} into {target_id}: {target_id} depends on {source_id}")

    # Anything reaching the source will reach the target once the edges move.
    queue = deque(set(_dep_ids(conn, target_id)) | set(source_deps))
    visited: set[str] = set()
    while queue:
        current = queue.popleft()
        if current in (target_id, source_id):
            raise ValidationError(
                f"cannot merge {source_id} into {target_id}: {target_id} would transitively depend on itself"
            )
        if current in visited:
            continue
        visited.add(current)
        queue.extend(_dep_ids(conn, current))


@guarded
def merge_items(
    conn: sqlite3.Connection,
    source_id: str,
    target_id: str,
    actor: AgentContext | None = None,
) -> dict[str, object]:
    """Fold ``source_id`` into ``target_id`` and delete the source.

    Steps:
    1. Refuse merging an item into itself, or a merge that would leave the
       target depending on itself.
    2. Edges move to the target in both directions; duplicates collapse.
    3. Logs move to the target, followed by a "Merged from" log.
    4. Labels are copied; the source description is appended.
    5. Children and learnings of the source are re-pointed at the target.
    6. The source is deleted. Its history stays.
    """
    if source_id == target_id:
        raise ValidationError("cannot merge an item into itself")
    with transaction(conn):
        source = _helpers.fetch_item(conn, source_id)
        target = _helpers.fetch_item(conn, target_id)
        _check_no_self_dependency(conn, source.id, target.id)
        now = now_iso()

        moved = 0
        for dep in _dep_ids(conn, source.id):
            moved += conn.execute(
                "INSERT OR IGNORE INTO deps (item_id, depends_on, created_at) VALUES (?, ?, ?)",
                (target.id, dep, now),
            ).rowcount
        for dependent in _dependent_ids(conn, source.id):
            moved += conn.execute(
                "INSERT OR IGNORE INTO deps (item_id, depends_on, created_at) VALUES (?, ?, ?)",
                (dependent, target.id, now),
            ).rowcount
        conn.execute("DELETE FROM deps WHERE item_id = ? OR depends_on = ?", (source.id, source.id))

        logs = conn.execute("UPDATE logs SET item_id = ? WHERE item_id = ?", (target.id, source.id)).rowcount
        conn.execute(
            "INSERT INTO logs (item_id, message, created_at) VALUES (?, ?, ?)",
            (target.id, f"Merged from {source.id}: {source.title}", now),
        )

        labels = conn.execute(
            "INSERT OR IGNORE INTO item_labels (item_id, label_id) "
            "SELECT ?, label_id FROM item_labels WHERE item_id = ?",
            (target.id, source.id),
        ).rowcount
        conn.execute("DELETE FROM item_labels WHERE item_id = ?", (source.id,))

        if source.description:
            sep = f"\n\n---\nMerged from {source.id}:\n" if target.description else ""
            _helpers.update_fields(conn, target.id, description=target.description + sep + source.description)
        else:
            _helpers.update_fields(conn, target.id)

        if target.parent_id == source.id:
            _helpers.update_fields(conn, target.id, parent_id=source.parent_id)
        children = conn.execute(
            "UPDATE items SET parent_id = ?, updated_at = ? WHERE parent_id = ? AND id != ?",
            (target.id, now, source.id, target.id),
        ).rowcount
        conn.execute("UPDATE learnings SET task_id = ? WHERE task_id = ?", (target.id, source.id))

        conn.execute("DELETE FROM items WHERE id = ?", (source.id,))
        record_event(
            conn, target.id, target.project, EVENT_MERGED,
            {"source": source.id, "title": source.title, "deps_moved": moved}, actor,
        )
        record_event(
            conn, source.id, source.project, EVENT_DELETED,
            {"title": source.title, "type": source.type, "status": source.status, "merged_into": target.id}, actor,
        )
        merged = _helpers.fetch_item(conn, target.id)
    return {
        "merged": source.id,
        "item": merged,
        "deps_moved": moved,
        "logs_moved": logs,
        "labels_copied": labels,
        "children_moved": children,
    }
