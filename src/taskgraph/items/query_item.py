"""Item reads: get, list with filters, children."""

from __future__ import annotations

import sqlite3

from taskgraph.db import guarded
from taskgraph.model import Item

from . import _helpers

_UNMET = (
    "EXISTS (SELECT 1 FROM deps d JOIN items b ON b.id = d.depends_on "
    "WHERE d.item_id = i.id AND b.status != 'done')"
)


@guarded
def get_item(conn: sqlite3.Connection, item_id: str) -> Item:
    """Return one item or raise NotFoundError."""
    return _helpers.fetch_item(conn, item_id)


@guarded
def list_items(
    conn: sqlite3.Connection,
    project: str | None = None,
    status: str | None = None,
    parent_id: str | None = None,
    item_type: str | None = None,
    labels: list[str] | None = None,
    blocking: str | None = None,
    blocked_by: str | None = None,
    has_blockers: bool = False,
    no_blockers: bool = False,
) -> list[Item]:
    """List items matching every given filter.

    ``blocking=X`` keeps the items X depends on; ``blocked_by=X`` keeps the
    items that depend on X. Labels match with AND semantics.
    """
    clauses: list[str] = []
    params: list[object] = []
    if project:
        clauses.append("i.project = ?")
        params.append(project)
    if status:
        _helpers.validate_status(status)
        clauses.append("i.status = ?")
        params.append(status)
    if parent_id:
        clauses.append("i.parent_id = ?")
        params.append(parent_id)
    if item_type:
        _helpers.validate_type(item_type)
        clauses.append("i.type = ?")
        params.append(item_type)
    if blocking:
        clauses.append("i.id IN (SELECT depends_on FROM deps WHERE item_id = ?)")
        params.append(blocking)
    if blocked_by:
        clauses.append("i.id IN (SELECT item_id FROM deps WHERE depends_on = ?)")
        params.append(blocked_by)
    if has_blockers:
        clauses.append(_UNMET)
    if no_blockers:
        clauses.append(f"NOT {_UNMET}")
    label_set = sorted(set(labels or []))
    if label_set:
        clauses.append(
            "i.id IN (SELECT il.item_id FROM item_labels il JOIN labels l ON l.id = il.label_id "
            f"WHERE l.name IN ({','.join('?' * len(label_set))}) "
            "GROUP BY il.item_id HAVING COUNT(DISTINCT l.name) = ?)"
        )
        params.extend(label_set)
        params.append(len(label_set))

    sql = "SELECT i.* FROM items i"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY i.priority ASC, i.created_at ASC, i.rowid ASC"
    return [Item.from_row(r) for r in conn.execute(sql, params).fetchall()]


@guarded
def children(conn: sqlite3.Connection, parent_id: str) -> list[Item]:
    """Direct children in creation order (template steps come out in step order)."""
    _helpers.fetch_item(conn, parent_id)
    rows = conn.execute(
        "SELECT * FROM items WHERE parent_id = ? ORDER BY COALESCE(step_index, -1), created_at, rowid",
        (parent_id,),
    ).fetchall()
    return [Item.from_row(r) for r in rows]
