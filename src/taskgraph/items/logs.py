"""Progress logs attached to items."""

from __future__ import annotations

import sqlite3

from taskgraph.agent import AgentContext
from taskgraph.db import guarded, now_iso, transaction
from taskgraph.errors import ValidationError
from taskgraph.history import EVENT_LOG_ADDED, record_event
from taskgraph.model import STATUS_IN_PROGRESS, LogEntry

from . import _helpers


@guarded
def add_log(conn: sqlite3.Connection, item_id: str, message: str, actor: AgentContext | None = None) -> LogEntry:
    """Append a log line. Refreshes the owner's last-active time on in_progress items."""
    message = (message or "").strip()
    if not message:
        raise ValidationError("log message must not be empty")
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        now = now_iso()
        cur = conn.execute(
            "INSERT INTO logs (item_id, message, created_at) VALUES (?, ?, ?)",
            (item.id, message, now),
        )
        if item.status == STATUS_IN_PROGRESS:
            _helpers.update_fields(conn, item.id, agent_last_active=now)
        else:
            _helpers.update_fields(conn, item.id)
        record_event(conn, item.id, item.project, EVENT_LOG_ADDED, {"message": message}, actor)
        return LogEntry(id=cur.lastrowid, item_id=item.id, message=message, created_at=now)


@guarded
def get_logs(conn: sqlite3.Connection, item_id: str) -> list[LogEntry]:
    _helpers.fetch_item(conn, item_id)
    rows = conn.execute(
        "SELECT * FROM logs WHERE item_id = ? ORDER BY created_at ASC, id ASC", (item_id,)
    ).fetchall()
    return [LogEntry(id=r["id"], item_id=r["item_id"], message=r["message"], created_at=r["created_at"]) for r in rows]
