"""Agent context and advisory ownership bookkeeping.

Ownership is business logic, not a lock: the owning agent id on an
in_progress item only makes ``start`` refuse other agents until they resume.
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass

from taskgraph.db import guarded, now_iso
from taskgraph.defaults import ENV_AGENT_ID, ENV_AGENT_TYPE
from taskgraph.model import STATUS_IN_PROGRESS, Item

SESSION_KEEP = 20


@dataclass(frozen=True)
class AgentContext:
    agent_id: str | None = None
    agent_type: str | None = None

    @classmethod
    def from_env(cls) -> AgentContext:
        return cls(
            agent_id=os.getenv(ENV_AGENT_ID) or None,
            agent_type=os.getenv(ENV_AGENT_TYPE) or None,
        )

    @property
    def is_set(self) -> bool:
        return bool(self.agent_id)

    @property
    def actor_type(self) -> str:
        return self.agent_type or ("agent" if self.agent_id else "human")


SYSTEM = AgentContext(agent_id="system", agent_type="system")


# ---------------------------------------------------------------------------
# Sessions: which project each agent touched last
# ---------------------------------------------------------------------------


@guarded
def record_agent_project_access(conn: sqlite3.Connection, agent_id: str, project: str) -> None:
    conn.execute(
        "INSERT INTO agent_sessions (agent_id, project, last_active) VALUES (?, ?, ?) "
        "ON CONFLICT(agent_id, project) DO UPDATE SET last_active = excluded.last_active",
        (agent_id, project, now_iso()),
    )


@guarded
def last_project_for_agent(conn: sqlite3.Connection, agent_id: str) -> str | None:
    row = conn.execute(
        "SELECT project FROM agent_sessions WHERE agent_id = ? "
        "ORDER BY last_active DESC LIMIT 1",
        (agent_id,),
    ).fetchone()
    return row["project"] if row else None


@guarded
def cleanup_agent_sessions(conn: sqlite3.Connection, keep: int = SESSION_KEEP) -> int:
    """Keep only the most recent ``keep`` session rows. Returns rows removed."""
    cur = conn.execute(
        "DELETE FROM agent_sessions WHERE rowid NOT IN ("
        "  SELECT rowid FROM agent_sessions ORDER BY last_active DESC LIMIT ?"
        ")",
        (keep,),
    )
    return cur.rowcount


# ---------------------------------------------------------------------------
# Ownership queries
# ---------------------------------------------------------------------------


@guarded
def in_progress_by_agent(conn: sqlite3.Connection, agent_id: str, project: str | None = None) -> list[Item]:
    sql = "SELECT * FROM items WHERE status = ? AND agent_id = ?"
    params: list[object] = [STATUS_IN_PROGRESS, agent_id]
    if project:
        sql += " AND project = ?"
        params.append(project)
    sql += " ORDER BY priority ASC, created_at ASC, rowid ASC"
    return [Item.from_row(r) for r in conn.execute(sql, params).fetchall()]


@guarded
def stale_items(conn: sqlite3.Connection, cutoff: str, project: str | None = None) -> list[Item]:
    """In-progress items whose last activity is older than ``cutoff`` (ISO time).

    Read-only: nothing is reassigned or reopened.
    """
    sql = (
        "SELECT * FROM items WHERE status = ? "
        "AND COALESCE(agent_last_active, updated_at) < ?"
    )
    params: list[object] = [STATUS_IN_PROGRESS, cutoff]
    if project:
        sql += " AND project = ?"
        params.append(project)
    sql += " ORDER BY COALESCE(agent_last_active, updated_at) ASC, rowid ASC"
    return [Item.from_row(r) for r in conn.execute(sql, params).fetchall()]
