"""Learnings: short knowledge notes tagged with concepts, optionally tied to an item."""

from __future__ import annotations

import json
import logging
import sqlite3

from taskgraph.db import ensure_project, guarded, now_iso, transaction
from taskgraph.errors import ConflictError, NotFoundError, StorageError, ValidationError
from taskgraph.items import _helpers
from taskgraph.model import Concept, Learning

log = logging.getLogger(__name__)

LEARNING_PREFIX = "lrn"
STATUS_ACTIVE = "active"
STATUS_STALE = "stale"
STATUS_ARCHIVED = "archived"
VALID_LEARNING_STATUSES = {STATUS_ACTIVE, STATUS_STALE, STATUS_ARCHIVED}


def _concepts_for(conn: sqlite3.Connection, learning_id: str) -> list[str]:
    rows = conn.execute(
        "SELECT concept_name FROM learning_concepts WHERE learning_id = ? ORDER BY concept_name",
        (learning_id,),
    ).fetchall()
    return [r["concept_name"] for r in rows]


def _row_to_learning(conn: sqlite3.Connection, row: sqlite3.Row) -> Learning:
    try:
        files = json.loads(row["files"] or "[]")
    except ValueError:
        log.warning("learning %s: unreadable files list", row["id"])
        files = []
    return Learning(
        id=row["id"],
        project=row["project"],
        summary=row["summary"],
        detail=row["detail"],
        files=files,
        concepts=_concepts_for(conn, row["id"]),
        status=row["status"],
        task_id=row["task_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _clean_concepts(concepts: list[str] | None) -> list[str]:
    cleaned = []
    for name in concepts or []:
        name = name.strip().lower()
        if name and name not in cleaned:
            cleaned.append(name)
    return cleaned


def _touch_concept(conn: sqlite3.Connection, project: str, name: str, now: str) -> None:
    conn.execute(
        "INSERT INTO concepts (name, project, last_updated) VALUES (?, ?, ?) "
        "ON CONFLICT(name, project) DO UPDATE SET last_updated = excluded.last_updated",
        (name, project, now),
    )


@guarded
def create_learning(
    conn: sqlite3.Connection,
    project: str,
    summary: str,
    detail: str = "",
    concepts: list[str] | None = None,
    files: list[str] | None = None,
    task_id: str | None = None,
) -> Learning:
    """Record a learning; unknown concepts are created on the fly."""
    summary = (summary or "").strip()
    if not summary:
        raise ValidationError("learning summary must not be empty")
    names = _clean_concepts(concepts)
    with transaction(conn):
        if task_id and not _helpers.item_exists(conn, task_id):
            raise NotFoundError(f"item not found: {task_id}")
        ensure_project(conn, project)
        now = now_iso()
        learning_id = None
        for _ in range(_helpers.ID_ATTEMPTS):
            candidate = f"{LEARNING_PREFIX}-{_helpers.random_suffix()}"
            if conn.execute("SELECT 1 FROM learnings WHERE id = ?", (candidate,)).fetchone() is None:
                learning_id = candidate
                break
        if learning_id is None:
            raise StorageError("could not allocate a unique learning id")
        conn.execute(
            "INSERT INTO learnings (id, project, task_id, summary, detail, files, status, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (learning_id, project, task_id, summary, detail or "", json.dumps(files or []), STATUS_ACTIVE, now, now),
        )
        for name in names:
            _touch_concept(conn, project, name, now)
            conn.execute(
                "INSERT OR IGNORE INTO learning_concepts (learning_id, concept_name, project) VALUES (?, ?, ?)",
                (learning_id, name, project),
            )
        return get_learning(conn, learning_id)


@guarded
def get_learning(conn: sqlite3.Connection, learning_id: str) -> Learning:
    row = conn.execute("SELECT * FROM learnings WHERE id = ?", (learning_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"learning not found: {learning_id}")
    return _row_to_learning(conn, row)


@guarded
def update_learning_status(conn: sqlite3.Connection, learning_id: str, status: str) -> Learning:
    if status not in VALID_LEARNING_STATUSES:
        raise ValidationError(f"Invalid learning status '{status}'. Valid: {', '.join(sorted(VALID_LEARNING_STATUSES))}")
    with transaction(conn):
        cur = conn.execute(
            "UPDATE learnings SET status = ?, updated_at = ? WHERE id = ?", (status, now_iso(), learning_id)
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"learning not found: {learning_id}")
        return get_learning(conn, learning_id)


def _status_filter(include_stale: bool) -> tuple[str, tuple[str, ...]]:
    statuses = (STATUS_ACTIVE, STATUS_STALE) if include_stale else (STATUS_ACTIVE,)
    return f"status IN ({','.join('?' * len(statuses))})", statuses


@guarded
def search_learnings(
    conn: sqlite3.Connection,
    project: str,
    text: str,
    include_stale: bool = False,
    limit: int = 50,
) -> list[Learning]:
    """Substring search over summary and detail, newest first. Archived learnings never match."""
    status_sql, statuses = _status_filter(include_stale)
    pattern = f"%{text.strip()}%"
    rows = conn.execute(
        f"SELECT * FROM learnings WHERE project = ? AND {status_sql} "
        "AND (summary LIKE ? OR detail LIKE ?) ORDER BY created_at DESC LIMIT ?",
        (project, *statuses, pattern, pattern, limit),
    ).fetchall()
    return [_row_to_learning(conn, r) for r in rows]


@guarded
def learnings_by_concepts(
    conn: sqlite3.Connection,
    project: str,
    concepts: list[str],
    include_stale: bool = False,
) -> list[Learning]:
    """Learnings tagged with any of the given concepts, newest first."""
    names = _clean_concepts(concepts)
    if not names:
        return []
    status_sql, statuses = _status_filter(include_stale)
    rows = conn.execute(
        f"SELECT * FROM learnings WHERE project = ? AND {status_sql} AND id IN ("
        "  SELECT learning_id FROM learning_concepts WHERE project = ? "
        f"  AND concept_name IN ({','.join('?' * len(names))})"
        ") ORDER BY created_at DESC",
        (project, *statuses, project, *names),
    ).fetchall()
    return [_row_to_learning(conn, r) for r in rows]


# ---------------------------------------------------------------------------
# Concepts
# ---------------------------------------------------------------------------


@guarded
def list_concepts(conn: sqlite3.Connection, project: str) -> list[Concept]:
    """Concepts with their count of active learnings, most used first."""
    rows = conn.execute(
        "SELECT c.name, c.project, c.summary, c.last_updated, "
        "  (SELECT COUNT(*) FROM learning_concepts lc JOIN learnings l ON l.id = lc.learning_id "
        "   WHERE lc.concept_name = c.name AND lc.project = c.project AND l.status = 'active') AS learning_count "
        "FROM concepts c WHERE c.project = ? ORDER BY learning_count DESC, c.name ASC",
        (project,),
    ).fetchall()
    return [Concept(**dict(r)) for r in rows]


@guarded
def set_concept_summary(conn: sqlite3.Connection, project: str, name: str, summary: str) -> None:
    with transaction(conn):
        cur = conn.execute(
            "UPDATE concepts SET summary = ?, last_updated = ? WHERE project = ? AND name = ?",
            (summary, now_iso(), project, name),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"concept not found: {name}")


@guarded
def rename_concept(conn: sqlite3.Connection, project: str, old: str, new: str) -> None:
    new = new.strip().lower()
    if not new:
        raise ValidationError("concept name must not be empty")
    with transaction(conn):
        if conn.execute("SELECT 1 FROM concepts WHERE project = ? AND name = ?", (project, old)).fetchone() is None:
            raise NotFoundError(f"concept not found: {old}")
        if conn.execute("SELECT 1 FROM concepts WHERE project = ? AND name = ?", (project, new)).fetchone():
            raise ConflictError(f"concept already exists: {new}")
        conn.execute(
            "UPDATE concepts SET name = ?, last_updated = ? WHERE project = ? AND name = ?",
            (new, now_iso(), project, old),
        )
        conn.execute(
            "UPDATE learning_concepts SET concept_name = ? WHERE project = ? AND concept_name = ?",
            (new, project, old),
        )


@guarded
def related_concepts(conn: sqlite3.Connection, item_id: str) -> list[Concept]:
    """Concepts from learnings recorded against this item or its parent."""
    item = _helpers.fetch_item(conn, item_id)
    ids = [item.id] + ([item.parent_id] if item.parent_id else [])
    marks = ",".join("?" * len(ids))
    rows = conn.execute(
        "SELECT c.name, c.project, c.summary, c.last_updated, COUNT(DISTINCT l.id) AS learning_count "
        "FROM concepts c "
        "JOIN learning_concepts lc ON lc.concept_name = c.name AND lc.project = c.project "
        "JOIN learnings l ON l.id = lc.learning_id "
        f"WHERE l.task_id IN ({marks}) AND c.project = ? "
        "GROUP BY c.name, c.project ORDER BY learning_count DESC, c.name ASC",
        (*ids, item.project),
    ).fetchall()
    return [Concept(**dict(r)) for r in rows]
