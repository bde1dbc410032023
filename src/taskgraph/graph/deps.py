"""Dependency edges.

An edge (item, depends_on) keeps ``item`` out of the ready set until
``depends_on`` is done. Edges are not checked for cycles: a cycle leaves
its members permanently unready (see cycles.find_cycles).

Duplicate edges are idempotent: adding an existing edge is a no-op and
``add_edge`` returns False.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import deque

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, now_iso, transaction
from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.history import EVENT_DEPENDENCY_ADDED, EVENT_DEPENDENCY_REMOVED, EVENT_STATUS_CHANGED, record_event
from taskgraph.items import _helpers
from taskgraph.model import STATUS_DONE, STATUS_IN_PROGRESS, STATUS_OPEN, TYPE_EPIC, DepStatus, Edge, Item

log = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 100


@guarded
def add_edge(
    conn: sqlite3.Connection,
    item_id: str,
    depends_on: str,
    actor: AgentContext | None = None,
) -> bool:
    """Make ``item_id`` depend on ``depends_on``. Returns False if the edge already existed.

    An in_progress item that gains an unmet dependency goes back to open and
    loses its owner.
    """
    if item_id == depends_on:
        raise ValidationError(f"{item_id} cannot depend on itself")
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        target = _helpers.fetch_item(conn, depends_on)
        cur = conn.execute(
            "INSERT OR IGNORE INTO deps (item_id, depends_on, created_at) VALUES (?, ?, ?)",
            (item.id, target.id, now_iso()),
        )
        if cur.rowcount == 0:
            return False
        record_event(conn, item.id, item.project, EVENT_DEPENDENCY_ADDED, {"depends_on": target.id}, actor)

        if item.status == STATUS_IN_PROGRESS and target.status != STATUS_DONE:
            _helpers.update_fields(conn, item.id, status=STATUS_OPEN, agent_id=None, agent_last_active=None)
            conn.execute(
                "INSERT INTO logs (item_id, message, created_at) VALUES (?, ?, ?)",
                (item.id, f"Reverted to open: new dependency {target.id} is not done", now_iso()),
            )
            record_event(
                conn, item.id, item.project, EVENT_STATUS_CHANGED,
                {"from": STATUS_IN_PROGRESS, "to": STATUS_OPEN, "reason": f"new dependency {target.id}"}, actor,
            )
            log.info("add_edge: %s reverted to open (depends on unfinished %s)", item.id, target.id)
        return True


@guarded
def remove_edge(
    conn: sqlite3.Connection,
    item_id: str,
    depends_on: str,
    actor: AgentContext | None = None,
) -> None:
    with transaction(conn):
        cur = conn.execute("DELETE FROM deps WHERE item_id = ? AND depends_on = ?", (item_id, depends_on))
        if cur.rowcount == 0:
            raise NotFoundError(f"no dependency {item_id} -> {depends_on}")
        row = conn.execute("SELECT project FROM items WHERE id = ?", (item_id,)).fetchone()
        record_event(conn, item_id, row["project"], EVENT_DEPENDENCY_REMOVED, {"depends_on": depends_on}, actor)


@guarded
def list_deps(conn: sqlite3.Connection, item_id: str) -> list[str]:
    """Direct dependency ids in the order the edges were added."""
    _helpers.fetch_item(conn, item_id)
    rows = conn.execute("SELECT depends_on FROM deps WHERE item_id = ? ORDER BY rowid", (item_id,)).fetchall()
    return [r["depends_on"] for r in rows]


@guarded
def dep_statuses(conn: sqlite3.Connection, item_id: str) -> list[DepStatus]:
    _helpers.fetch_item(conn, item_id)
    rows = conn.execute(
        "SELECT i.id, i.title, i.status FROM deps d JOIN items i ON i.id = d.depends_on "
        "WHERE d.item_id = ? ORDER BY d.rowid",
        (item_id,),
    ).fetchall()
    return [DepStatus(id=r["id"], title=r["title"], status=r["status"]) for r in rows]


def _parent_chain(conn: sqlite3.Connection, item_id: str) -> list[Item]:
    """Ancestors of ``item_id``, root first."""
    chain: list[Item] = []
    seen = {item_id}
    row = conn.execute("SELECT parent_id FROM items WHERE id = ?", (item_id,)).fetchone()
    parent_id = row["parent_id"] if row else None
    while parent_id and parent_id not in seen and len(chain) < MAX_CHAIN_DEPTH:
        seen.add(parent_id)
        parent_row = conn.execute("SELECT * FROM items WHERE id = ?", (parent_id,)).fetchone()
        if parent_row is None:
            break
        parent = Item.from_row(parent_row)
        chain.append(parent)
        parent_id = parent.parent_id
    chain.reverse()
    return chain


@guarded
def ancestor_dep_statuses(conn: sqlite3.Connection, item_id: str) -> list[DepStatus]:
    """Unfinished dependencies inherited from ancestor epics, root epic first.

    Display only: readiness looks at direct edges alone.
    """
    _helpers.fetch_item(conn, item_id)
    inherited: list[DepStatus] = []
    for ancestor in _parent_chain(conn, item_id):
        if ancestor.type != TYPE_EPIC:
            continue
        rows = conn.execute(
            "SELECT i.id, i.title, i.status FROM deps d JOIN items i ON i.id = d.depends_on "
            "WHERE d.item_id = ? AND i.status != ? ORDER BY d.rowid",
            (ancestor.id, STATUS_DONE),
        ).fetchall()
        inherited.extend(
            DepStatus(id=r["id"], title=r["title"], status=r["status"], inherited_from=ancestor.id) for r in rows
        )
    return inherited


@guarded
def all_dep_statuses(conn: sqlite3.Connection, item_id: str) -> list[DepStatus]:
    """Direct dependencies followed by those inherited from ancestor epics."""
    return dep_statuses(conn, item_id) + ancestor_dep_statuses(conn, item_id)


@guarded
def has_unmet_deps(conn: sqlite3.Connection, item_id: str) -> bool:
    _helpers.fetch_item(conn, item_id)
    return bool(_helpers.unmet_dep_ids(conn, item_id))


@guarded
def blocked_by(conn: sqlite3.Connection, item_id: str) -> list[DepStatus]:
    """Items that depend on ``item_id``."""
    _helpers.fetch_item(conn, item_id)
    rows = conn.execute(
        "SELECT i.id, i.title, i.status FROM deps d JOIN items i ON i.id = d.item_id "
        "WHERE d.depends_on = ? ORDER BY d.rowid",
        (item_id,),
    ).fetchall()
    return [DepStatus(id=r["id"], title=r["title"], status=r["status"]) for r in rows]


@guarded
def all_edges(conn: sqlite3.Connection, project: str | None = None) -> list[Edge]:
    sql = (
        "SELECT d.item_id, d.depends_on, a.title AS item_title, a.status AS item_status, "
        "b.title AS depends_on_title, b.status AS depends_on_status "
        "FROM deps d JOIN items a ON a.id = d.item_id JOIN items b ON b.id = d.depends_on"
    )
    params: list[object] = []
    if project:
        sql += " WHERE a.project = ?"
        params.append(project)
    sql += " ORDER BY d.rowid"
    return [Edge(**dict(r)) for r in conn.execute(sql, params).fetchall()]


def _walk(conn: sqlite3.Connection, start: str, forward: bool, max_depth: int) -> list[tuple[str, int]]:
    """Breadth-first walk along edges. Returns (id, depth) pairs, each id once."""
    sql = (
        "SELECT depends_on AS next FROM deps WHERE item_id = ? ORDER BY rowid"
        if forward
        else "SELECT item_id AS next FROM deps WHERE depends_on = ? ORDER BY rowid"
    )
    seen = {start}
    found: list[tuple[str, int]] = []
    queue: deque[tuple[str, int]] = deque([(start, 0)])
    while queue:
        current, depth = queue.popleft()
        if depth >= max_depth:
            continue
        for row in conn.execute(sql, (current,)).fetchall():
            nxt = row["next"]
            if nxt in seen:
                continue
            seen.add(nxt)
            found.append((nxt, depth + 1))
            queue.append((nxt, depth + 1))
    return found


@guarded
def dependency_chain(conn: sqlite3.Connection, item_id: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[tuple[str, int]]:
    """Everything ``item_id`` transitively depends on, with its distance."""
    _helpers.fetch_item(conn, item_id)
    return _walk(conn, item_id, forward=True, max_depth=max_depth)


@guarded
def reverse_chain(conn: sqlite3.Connection, item_id: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[tuple[str, int]]:
    """Everything that transitively depends on ``item_id``, with its distance."""
    _helpers.fetch_item(conn, item_id)
    return _walk(conn, item_id, forward=False, max_depth=max_depth)


@guarded
def impact(conn: sqlite3.Connection, item_id: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[tuple[Item, int]]:
    """Open items that become ready once ``item_id`` is done, directly or down the chain.

    A downstream open item qualifies when each of its unfinished dependencies
    is ``item_id`` or another qualifying item. Returns (item, depth) ordered
    by depth, then priority, then creation.
    """
    _helpers.fetch_item(conn, item_id)
    depth_of: dict[str, int] = {}
    queue: deque[tuple[str, int]] = deque([(item_id, 0)])
    while queue:
        current, depth = queue.popleft()
        if depth >= max_depth:
            continue
        rows = conn.execute(
            "SELECT i.id FROM deps d JOIN items i ON i.id = d.item_id "
            "WHERE d.depends_on = ? AND i.status = ? ORDER BY d.rowid",
            (current, STATUS_OPEN),
        ).fetchall()
        for row in rows:
            nxt = row["id"]
            if nxt == item_id or nxt in depth_of:
                continue
            depth_of[nxt] = depth + 1
            queue.append((nxt, depth + 1))

    unmet = {nid: set(_helpers.unmet_dep_ids(conn, nid)) for nid in depth_of}
    resolved = {item_id}
    changed = True
    while changed:
        changed = False
        for nid in depth_of:
            if nid not in resolved and unmet[nid] and unmet[nid] <= resolved:
                resolved.add(nid)
                changed = True

    found = [(_helpers.fetch_item(conn, nid), depth_of[nid]) for nid in depth_of if nid in resolved]
    found.sort(key=lambda pair: (pair[1], pair[0].priority, pair[0].created_at))
    return found
