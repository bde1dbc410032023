"""Project listing and the per-project status report."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

from taskgraph.agent import stale_items
from taskgraph.config import Config
from taskgraph.db import ago_iso, guarded
from taskgraph.graph.ready import ready_items
from taskgraph.history import recently_closed
from taskgraph.items.query_item import list_items
from taskgraph.model import STATUS_BLOCKED, STATUS_IN_PROGRESS, VALID_STATUSES, Item

RECENT_DONE = 3


@dataclass
class ProjectStatus:
    project: str
    counts: dict[str, int]
    ready: list[Item] = field(default_factory=list)
    in_progress_mine: list[Item] = field(default_factory=list)
    in_progress_others: list[Item] = field(default_factory=list)
    blocked: list[Item] = field(default_factory=list)
    recently_done: list[Item] = field(default_factory=list)
    stale: list[Item] = field(default_factory=list)


@guarded
def list_projects(conn: sqlite3.Connection) -> list[str]:
    """Every project that has a projects row or any item, sorted."""
    rows = conn.execute(
        "SELECT name FROM projects UNION SELECT DISTINCT project FROM items ORDER BY 1"
    ).fetchall()
    return [r[0] for r in rows]


@guarded
def project_status(
    conn: sqlite3.Connection,
    project: str,
    labels: list[str] | None = None,
    agent_id: str | None = None,
    config: Config | None = None,
) -> ProjectStatus:
    config = config or Config()
    counts = {status: 0 for status in sorted(VALID_STATUSES)}
    for row in conn.execute(
        "SELECT status, COUNT(*) AS n FROM items WHERE project = ? GROUP BY status", (project,)
    ).fetchall():
        counts[row["status"]] = row["n"]
    counts["ready"] = len(ready_items(conn, project))

    in_progress = list_items(conn, project=project, status=STATUS_IN_PROGRESS, labels=labels)
    mine = [i for i in in_progress if agent_id and i.agent_id == agent_id]
    others = [i for i in in_progress if not (agent_id and i.agent_id == agent_id)]

    return ProjectStatus(
        project=project,
        counts=counts,
        ready=ready_items(conn, project, labels),
        in_progress_mine=mine,
        in_progress_others=others,
        blocked=list_items(conn, project=project, status=STATUS_BLOCKED, labels=labels),
        recently_done=recently_closed(conn, project, limit=RECENT_DONE),
        stale=stale_items(conn, ago_iso(minutes=config.stale_minutes), project),
    )
