"""SQLite store: schema, connection, transactions, and helpers.

One DB file per project tree. Every process opens its own short-lived
connection; cross-process safety is SQLite's own locking (WAL + busy timeout).
"""

from __future__ import annotations

import contextlib
import datetime
import functools
import itertools
import os
import sqlite3
from collections.abc import Callable, Iterator
from typing import Any, TypeVar

from taskgraph.defaults import resolve_db_path
from taskgraph.errors import StorageError

F = TypeVar("F", bound=Callable[..., Any])

# ---------------------------------------------------------------------------
# Paths: lazy resolution so env vars and cwd are read at call time, not import
# ---------------------------------------------------------------------------

_db_path: str | None = None


def _get_db_path() -> str:
    global _db_path
    if _db_path is None:
        _db_path = resolve_db_path()
    return _db_path


def reset_db_path() -> None:
    """Clear cached DB path so next access re-resolves from env/cwd."""
    global _db_path
    _db_path = None


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


def get_db(db_path: str | None = None) -> sqlite3.Connection:
    """Open a WAL-mode autocommit connection with row factory."""
    path = db_path or _get_db_path()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    try:
        conn = sqlite3.connect(path, timeout=5, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        conn.execute("PRAGMA foreign_keys=ON")
    except sqlite3.Error as exc:
        raise StorageError(f"cannot open store {path}: {exc}") from exc
    return conn


_savepoints = itertools.count()


@contextlib.contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block atomically.

    Outermost use takes the write lock up front (BEGIN IMMEDIATE); nested use
    becomes a SAVEPOINT so an inner failure only unwinds the inner block.
    """
    if conn.in_transaction:
        name = f"sp_{next(_savepoints)}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO {name}")
            conn.execute(f"RELEASE {name}")
            raise
        conn.execute(f"RELEASE {name}")
        return

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.Error as exc:
        raise StorageError(f"cannot begin transaction: {exc}") from exc
    try:
        yield conn
    except sqlite3.Error as exc:
        conn.execute("ROLLBACK")
        raise StorageError(str(exc)) from exc
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        raise StorageError(f"commit failed: {exc}") from exc


def guarded(func: F) -> F:
    """Re-raise sqlite3.Error escaping a library call as StorageError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    name                TEXT PRIMARY KEY,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS items (
    id                  TEXT PRIMARY KEY,
    project             TEXT NOT NULL,
    type                TEXT NOT NULL DEFAULT 'task',
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    status              TEXT NOT NULL DEFAULT 'open',
    priority            INTEGER NOT NULL DEFAULT 2,
    parent_id           TEXT DEFAULT NULL,
    agent_id            TEXT DEFAULT NULL,
    agent_last_active   TEXT DEFAULT NULL,
    template_id         TEXT DEFAULT NULL,
    step_index          INTEGER DEFAULT NULL,
    variables           TEXT DEFAULT NULL,
    template_hash       TEXT DEFAULT NULL,
    results             TEXT DEFAULT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    closed_at           TEXT DEFAULT NULL
);

CREATE TABLE IF NOT EXISTS deps (
    item_id             TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    depends_on          TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    created_at          TEXT NOT NULL,
    PRIMARY KEY (item_id, depends_on)
);

CREATE TABLE IF NOT EXISTS logs (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id             TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    message             TEXT NOT NULL,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS labels (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    project             TEXT NOT NULL,
    name                TEXT NOT NULL,
    color               TEXT DEFAULT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (project, name)
);

CREATE TABLE IF NOT EXISTS item_labels (
    item_id             TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
    label_id            INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
    PRIMARY KEY (item_id, label_id)
);

CREATE TABLE IF NOT EXISTS concepts (
    name                TEXT NOT NULL,
    project             TEXT NOT NULL,
    summary             TEXT DEFAULT NULL,
    last_updated        TEXT NOT NULL,
    PRIMARY KEY (name, project)
);

CREATE TABLE IF NOT EXISTS learnings (
    id                  TEXT PRIMARY KEY,
    project             TEXT NOT NULL,
    task_id             TEXT DEFAULT NULL,
    summary             TEXT NOT NULL,
    detail              TEXT NOT NULL DEFAULT '',
    files               TEXT NOT NULL DEFAULT '[]',
    status              TEXT NOT NULL DEFAULT 'active',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS learning_concepts (
    learning_id         TEXT NOT NULL REFERENCES learnings(id) ON DELETE CASCADE,
    concept_name        TEXT NOT NULL,
    project             TEXT NOT NULL,
    PRIMARY KEY (learning_id, concept_name)
);

CREATE TABLE IF NOT EXISTS history (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id             TEXT NOT NULL,
    project             TEXT NOT NULL,
    event_type          TEXT NOT NULL,
    actor_id            TEXT DEFAULT NULL,
    actor_type          TEXT DEFAULT NULL,
    changes             TEXT DEFAULT NULL,
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_sessions (
    agent_id            TEXT NOT NULL,
    project             TEXT NOT NULL,
    last_active         TEXT NOT NULL,
    PRIMARY KEY (agent_id, project)
);

CREATE INDEX IF NOT EXISTS idx_items_project_status ON items(project, status);
CREATE INDEX IF NOT EXISTS idx_items_parent ON items(parent_id);
CREATE INDEX IF NOT EXISTS idx_deps_depends_on ON deps(depends_on);
CREATE INDEX IF NOT EXISTS idx_logs_item ON logs(item_id);
CREATE INDEX IF NOT EXISTS idx_history_item ON history(item_id);
CREATE INDEX IF NOT EXISTS idx_history_created ON history(created_at);
CREATE INDEX IF NOT EXISTS idx_learnings_project ON learnings(project);
"""


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


def init_db(db_path: str | None = None) -> None:
    """Create all tables if they don't exist."""
    conn = get_db(db_path)
    try:
        conn.executescript(_SCHEMA_SQL)
        _migrate(conn)
    except sqlite3.Error as exc:
        raise StorageError(f"schema setup failed: {exc}") from exc
    finally:
        conn.close()


def _migrate(conn: sqlite3.Connection) -> None:
    """Add columns that may be missing in older databases."""
    cursor = conn.execute("PRAGMA table_info(items)")
    item_cols = {row["name"] for row in cursor.fetchall()}
    for col, typedef in [
        ("agent_id", "TEXT DEFAULT NULL"),
        ("agent_last_active", "TEXT DEFAULT NULL"),
        ("template_id", "TEXT DEFAULT NULL"),
        ("step_index", "INTEGER DEFAULT NULL"),
        ("variables", "TEXT DEFAULT NULL"),
        ("template_hash", "TEXT DEFAULT NULL"),
        ("results", "TEXT DEFAULT NULL"),
        ("closed_at", "TEXT DEFAULT NULL"),
    ]:
        if col not in item_cols:
            conn.execute(f"ALTER TABLE items ADD COLUMN {col} {typedef}")

    cursor = conn.execute("PRAGMA table_info(labels)")
    label_cols = {row["name"] for row in cursor.fetchall()}
    if "color" not in label_cols:
        conn.execute("ALTER TABLE labels ADD COLUMN color TEXT DEFAULT NULL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.datetime.now().isoformat()


def ago_iso(**delta: float) -> str:
    """ISO timestamp for now minus a timedelta, e.g. ago_iso(minutes=5)."""
    return (datetime.datetime.now() - datetime.timedelta(**delta)).isoformat()


def ensure_project(conn: sqlite3.Connection, project: str) -> None:
    now = now_iso()
    conn.execute(
        "INSERT INTO projects (name, created_at, updated_at) VALUES (?, ?, ?) "
        "ON CONFLICT(name) DO UPDATE SET updated_at = excluded.updated_at",
        (project, now, now),
    )
