"""Shared helpers for item CRUD and status operations."""

from __future__ import annotations

import secrets
import sqlite3

from taskgraph.db import now_iso
from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.model import VALID_PRIORITIES, VALID_STATUSES, VALID_TYPES, Item

ID_SUFFIX_BYTES = 3
ID_ATTEMPTS = 5


def random_suffix() -> str:
    """Six lowercase hex characters."""
    return secrets.token_hex(ID_SUFFIX_BYTES)


def new_item_id(prefix: str) -> str:
    return f"{prefix}-{random_suffix()}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_type(item_type: str) -> None:
    if item_type not in VALID_TYPES:
        raise ValidationError(f"Invalid type '{item_type}'. Valid: {', '.join(sorted(VALID_TYPES))}")


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Valid: {', '.join(sorted(VALID_STATUSES))}")


def validate_priority(priority: int) -> None:
    if isinstance(priority, bool) or priority not in VALID_PRIORITIES:
        raise ValidationError(f"Invalid priority '{priority}'. Valid: 1 (high), 2 (medium), 3 (low)")


def validate_title(title: str) -> str:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title must not be empty")
    return title


# ---------------------------------------------------------------------------
# Row access
# ---------------------------------------------------------------------------


def fetch_item(conn: sqlite3.Connection, item_id: str) -> Item:
    row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"item not found: {item_id}")
    return Item.from_row(row)


def item_exists(conn: sqlite3.Connection, item_id: str) -> bool:
    return conn.execute("SELECT 1 FROM items WHERE id = ?", (item_id,)).fetchone() is not None


def update_fields(conn: sqlite3.Connection, item_id: str, **fields: object) -> None:
    """UPDATE items SET <fields>, updated_at = now WHERE id = item_id."""
    fields["updated_at"] = now_iso()
    assignments = ", ".join(f"{name} = ?" for name in fields)
    conn.execute(f"UPDATE items SET {assignments} WHERE id = ?", (*fields.values(), item_id))


def open_children(conn: sqlite3.Connection, item_id: str) -> list[str]:
    rows = conn.execute(
        "SELECT id FROM items WHERE parent_id = ? AND status NOT IN ('done', 'canceled') "
        "ORDER BY created_at, rowid",
        (item_id,),
    ).fetchall()
    return [r["id"] for r in rows]


def has_children(conn: sqlite3.Connection, item_id: str) -> bool:
    return conn.execute("SELECT 1 FROM items WHERE parent_id = ? LIMIT 1", (item_id,)).fetchone() is not None


def unmet_dep_ids(conn: sqlite3.Connection, item_id: str) -> list[str]:
    rows = conn.execute(
        "SELECT d.depends_on FROM deps d JOIN items i ON i.id = d.depends_on "
        "WHERE d.item_id = ? AND i.status != 'done' ORDER BY d.rowid",
        (item_id,),
    ).fetchall()
    return [r["depends_on"] for r in rows]
