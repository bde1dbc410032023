"""Cycle detection over the dependency graph.

Edges are never rejected for closing a loop; this scan reports loops so a
caller can see why items never become ready.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, transaction
from taskgraph.history import EVENT_DEPENDENCY_REMOVED, record_event

log = logging.getLogger(__name__)


@guarded
def find_cycles(conn: sqlite3.Connection, project: str | None = None) -> list[list[str]]:
    """Return each dependency cycle once, as a path starting at its smallest id."""
    sql = "SELECT d.item_id, d.depends_on FROM deps d JOIN items i ON i.id = d.item_id"
    params: list[object] = []
    if project:
        sql += " WHERE i.project = ?"
        params.append(project)
    sql += " ORDER BY d.rowid"

    graph: dict[str, list[str]] = defaultdict(list)
    for row in conn.execute(sql, params).fetchall():
        graph[row["item_id"]].append(row["depends_on"])

    cycles: list[list[str]] = []
    seen_keys: set[tuple[str, ...]] = set()
    visited: set[str] = set()

    def visit(node: str, path: list[str], on_path: set[str]) -> None:
        for nxt in graph.get(node, []):
            if nxt in on_path:
                cycle = path[path.index(nxt):]
                pivot = cycle.index(min(cycle))
                normalized = cycle[pivot:] + cycle[:pivot]
                key = tuple(normalized)
                if key not in seen_keys:
                    seen_keys.add(key)
                    cycles.append(normalized)
                continue
            if nxt in visited:
                continue
            path.append(nxt)
            on_path.add(nxt)
            visit(nxt, path, on_path)
            on_path.discard(nxt)
            path.pop()
        visited.add(node)

    for start in sorted(graph):
        if start not in visited:
            visit(start, [start], {start})
    return cycles


@guarded
def find_parent_child_cycles(conn: sqlite3.Connection, project: str | None = None) -> list[tuple[str, str]]:
    """Edges between an item and its own parent or child, as (item_id, depends_on).

    An epic waiting on its child can never close, and a child waiting on its
    epic can never become ready, so either direction deadlocks the pair.
    """
    sql = (
        "SELECT d.item_id, d.depends_on FROM deps d "
        "JOIN items a ON a.id = d.item_id JOIN items b ON b.id = d.depends_on "
        "WHERE (b.parent_id = d.item_id OR a.parent_id = d.depends_on)"
    )
    params: list[object] = []
    if project:
        sql += " AND a.project = ?"
        params.append(project)
    sql += " ORDER BY d.rowid"
    return [(r["item_id"], r["depends_on"]) for r in conn.execute(sql, params).fetchall()]


@guarded
def fix_parent_child_cycles(
    conn: sqlite3.Connection,
    project: str | None = None,
    actor: AgentContext | None = None,
) -> list[tuple[str, str]]:
    """Remove every parent/child edge found by find_parent_child_cycles. Returns the removed edges."""
    with transaction(conn):
        removed = find_parent_child_cycles(conn, project)
        for item_id, depends_on in removed:
            conn.execute("DELETE FROM deps WHERE item_id = ? AND depends_on = ?", (item_id, depends_on))
            row = conn.execute("SELECT project FROM items WHERE id = ?", (item_id,)).fetchone()
            record_event(
                conn, item_id, row["project"], EVENT_DEPENDENCY_REMOVED,
                {"depends_on": depends_on, "reason": "parent/child cycle"}, actor,
            )
    if removed:
        log.info("fix_parent_child_cycles: removed %d edges", len(removed))
    return removed
