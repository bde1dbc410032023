"""Readiness: computed relationally on every call, never cached."""

from __future__ import annotations

import sqlite3

from taskgraph.db import guarded
from taskgraph.model import Item


@guarded
def ready_items(
    conn: sqlite3.Connection,
    project: str | None = None,
    labels: list[str] | None = None,
) -> list[Item]:
    """Open items with every direct dependency done.

    Ordered by priority, then creation time, then insertion order. A label
    filter keeps items carrying all of the given labels.
    """
    sql = (
        "SELECT i.* FROM items i WHERE i.status = 'open' "
        "AND NOT EXISTS (SELECT 1 FROM deps d JOIN items b ON b.id = d.depends_on "
        "  WHERE d.item_id = i.id AND b.status != 'done')"
    )
    params: list[object] = []
    if project:
        sql += " AND i.project = ?"
        params.append(project)
    label_set = sorted(set(labels or []))
    if label_set:
        sql += (
            " AND i.id IN (SELECT il.item_id FROM item_labels il JOIN labels l ON l.id = il.label_id "
            f"WHERE l.name IN ({','.join('?' * len(label_set))}) "
            "GROUP BY il.item_id HAVING COUNT(DISTINCT l.name) = ?)"
        )
        params.extend(label_set)
        params.append(len(label_set))
    sql += " ORDER BY i.priority ASC, i.created_at ASC, i.rowid ASC"
    return [Item.from_row(r) for r in conn.execute(sql, params).fetchall()]
