"""Append-only audit trail per item, with tiered retention cleanup."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from taskgraph.agent import AgentContext
from taskgraph.config import Config
from taskgraph.db import ago_iso, guarded, now_iso, transaction
from taskgraph.model import HistoryEntry, Item

log = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_TITLE_CHANGED = "title_changed"
EVENT_DESCRIPTION_CHANGED = "description_changed"
EVENT_PRIORITY_CHANGED = "priority_changed"
EVENT_PARENT_CHANGED = "parent_changed"
EVENT_COMPLETED = "completed"
EVENT_CANCELED = "canceled"
EVENT_REOPENED = "reopened"
EVENT_RESUMED = "resumed"
EVENT_DEPENDENCY_ADDED = "dependency_added"
EVENT_DEPENDENCY_REMOVED = "dependency_removed"
EVENT_DELETED = "deleted"
EVENT_LOG_ADDED = "log_added"
EVENT_MERGED = "merged"

VALID_EVENTS = {
    EVENT_CREATED, EVENT_STATUS_CHANGED, EVENT_TITLE_CHANGED, EVENT_DESCRIPTION_CHANGED,
    EVENT_PRIORITY_CHANGED, EVENT_PARENT_CHANGED, EVENT_COMPLETED, EVENT_CANCELED,
    EVENT_REOPENED, EVENT_RESUMED, EVENT_DEPENDENCY_ADDED, EVENT_DEPENDENCY_REMOVED,
    EVENT_DELETED, EVENT_LOG_ADDED, EVENT_MERGED,
}

# Kept for the longer status window during cleanup
STATUS_EVENTS = (EVENT_STATUS_CHANGED, EVENT_COMPLETED, EVENT_CANCELED, EVENT_REOPENED, EVENT_RESUMED)

DEFAULT_LIMIT = 50


@dataclass
class CleanupResult:
    total_before: int
    deleted_count: int
    deleted_status: int
    deleted_other: int
    dry_run: bool = False


def record_event(
    conn: sqlite3.Connection,
    item_id: str,
    project: str,
    event_type: str,
    changes: dict[str, Any] | None = None,
    actor: AgentContext | None = None,
) -> None:
    """Append one history row. Callers run this inside their own transaction."""
    actor = actor or AgentContext()
    conn.execute(
        "INSERT INTO history (item_id, project, event_type, actor_id, actor_type, changes, created_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            item_id,
            project,
            event_type,
            actor.agent_id,
            actor.actor_type,
            json.dumps(changes) if changes is not None else None,
            now_iso(),
        ),
    )


def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
    changes = None
    if row["changes"]:
        try:
            changes = json.loads(row["changes"])
        except ValueError:
            log.warning("history %s: malformed payload for %s", row["id"], row["item_id"])
    return HistoryEntry(
        id=row["id"],
        item_id=row["item_id"],
        project=row["project"],
        event_type=row["event_type"],
        actor_id=row["actor_id"],
        actor_type=row["actor_type"],
        changes=changes,
        created_at=row["created_at"],
    )


@guarded
def query_history(
    conn: sqlite3.Connection,
    *,
    item_id: str | None = None,
    project: str | None = None,
    actor_id: str | None = None,
    event_types: list[str] | tuple[str, ...] | None = None,
    since: str | None = None,
    until: str | None = None,
    limit: int = DEFAULT_LIMIT,
) -> list[HistoryEntry]:
    """Filtered history, newest first."""
    clauses: list[str] = []
    params: list[object] = []
    if item_id:
        clauses.append("item_id = ?")
        params.append(item_id)
    if project:
        clauses.append("project = ?")
        params.append(project)
    if actor_id:
        clauses.append("actor_id = ?")
        params.append(actor_id)
    if event_types:
        clauses.append(f"event_type IN ({','.join('?' * len(event_types))})")
        params.extend(event_types)
    if since:
        clauses.append("created_at >= ?")
        params.append(since)
    if until:
        clauses.append("created_at <= ?")
        params.append(until)
    sql = "SELECT * FROM history"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at DESC, id DESC"
    if limit and limit > 0:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_entry(r) for r in conn.execute(sql, params).fetchall()]


def get_item_history(conn: sqlite3.Connection, item_id: str, limit: int = DEFAULT_LIMIT) -> list[HistoryEntry]:
    return query_history(conn, item_id=item_id, limit=limit)


@guarded
def cleanup_history(conn: sqlite3.Connection, config: Config | None = None, dry_run: bool = False) -> CleanupResult:
    """Delete history outside its retention window.

    Nothing younger than ``keep_all_hours`` is touched. Status events live
    ``status_days``; everything else lives ``other_days``.
    """
    config = config or Config()
    keep_all_cutoff = ago_iso(hours=config.history_keep_all_hours)
    status_cutoff = min(ago_iso(days=config.history_status_days), keep_all_cutoff)
    other_cutoff = min(ago_iso(days=config.history_other_days), keep_all_cutoff)
    marks = ",".join("?" * len(STATUS_EVENTS))

    status_where = f"event_type IN ({marks}) AND created_at < ?"
    other_where = f"event_type NOT IN ({marks}) AND created_at < ?"
    status_params = (*STATUS_EVENTS, status_cutoff)
    other_params = (*STATUS_EVENTS, other_cutoff)

    total_before = conn.execute("SELECT COUNT(*) FROM history").fetchone()[0]
    if dry_run:
        n_status = conn.execute(f"SELECT COUNT(*) FROM history WHERE {status_where}", status_params).fetchone()[0]
        n_other = conn.execute(f"SELECT COUNT(*) FROM history WHERE {other_where}", other_params).fetchone()[0]
        return CleanupResult(total_before, n_status + n_other, n_status, n_other, dry_run=True)

    with transaction(conn):
        n_status = conn.execute(f"DELETE FROM history WHERE {status_where}", status_params).rowcount
        n_other = conn.execute(f"DELETE FROM history WHERE {other_where}", other_params).rowcount
    log.debug("cleanup_history: removed %s status and %s other events", n_status, n_other)
    return CleanupResult(total_before, n_status + n_other, n_status, n_other)


@guarded
def recently_closed(
    conn: sqlite3.Connection,
    project: str | None = None,
    limit: int = 10,
    since: str | None = None,
) -> list[Item]:
    """Done or canceled items, most recently closed first."""
    sql = "SELECT * FROM items WHERE status IN ('done', 'canceled') AND closed_at IS NOT NULL"
    params: list[object] = []
    if project:
        sql += " AND project = ?"
        params.append(project)
    if since:
        sql += " AND closed_at >= ?"
        params.append(since)
    sql += " ORDER BY closed_at DESC, rowid DESC LIMIT ?"
    params.append(limit)
    return [Item.from_row(r) for r in conn.execute(sql, params).fetchall()]
