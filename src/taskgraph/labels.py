"""Project-scoped labels and their links to items."""

from __future__ import annotations

import re
import sqlite3

from taskgraph.db import ensure_project, guarded, now_iso, transaction
from taskgraph.errors import ConflictError, NotFoundError, ValidationError
from taskgraph.items import _helpers
from taskgraph.model import Label

_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")


def _row_to_label(row: sqlite3.Row) -> Label:
    return Label(
        id=row["id"],
        project=row["project"],
        name=row["name"],
        color=row["color"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("label name must not be empty")
    if any(c.isspace() for c in name) or "," in name:
        raise ValidationError(f"invalid label name {name!r}: no spaces or commas")
    return name


def _check_color(color: str | None) -> None:
    if color and not _COLOR.match(color):
        raise ValidationError(f"invalid color {color!r}: expected #rrggbb")


def _fetch(conn: sqlite3.Connection, project: str, name: str) -> Label:
    row = conn.execute("SELECT * FROM labels WHERE project = ? AND name = ?", (project, name)).fetchone()
    if row is None:
        raise NotFoundError(f"label not found: {name} (project {project})")
    return _row_to_label(row)


@guarded
def create_label(conn: sqlite3.Connection, project: str, name: str, color: str | None = None) -> Label:
    name = _clean_name(name)
    _check_color(color)
    with transaction(conn):
        if conn.execute("SELECT 1 FROM labels WHERE project = ? AND name = ?", (project, name)).fetchone():
            raise ConflictError(f"label already exists: {name}")
        ensure_project(conn, project)
        now = now_iso()
        conn.execute(
            "INSERT INTO labels (project, name, color, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (project, name, color, now, now),
        )
        return _fetch(conn, project, name)


@guarded
def ensure_label(conn: sqlite3.Connection, project: str, name: str) -> Label:
    """Return the label, creating it when missing."""
    name = _clean_name(name)
    with transaction(conn):
        now = now_iso()
        conn.execute(
            "INSERT OR IGNORE INTO labels (project, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (project, name, now, now),
        )
        return _fetch(conn, project, name)


@guarded
def get_label(conn: sqlite3.Connection, project: str, name: str) -> Label:
    return _fetch(conn, project, name)


@guarded
def list_labels(conn: sqlite3.Connection, project: str) -> list[Label]:
    rows = conn.execute("SELECT * FROM labels WHERE project = ? ORDER BY name", (project,)).fetchall()
    return [_row_to_label(r) for r in rows]


@guarded
def rename_label(conn: sqlite3.Connection, project: str, old: str, new: str) -> Label:
    new = _clean_name(new)
    with transaction(conn):
        label = _fetch(conn, project, old)
        if conn.execute("SELECT 1 FROM labels WHERE project = ? AND name = ?", (project, new)).fetchone():
            raise ConflictError(f"label already exists: {new}")
        conn.execute("UPDATE labels SET name = ?, updated_at = ? WHERE id = ?", (new, now_iso(), label.id))
        return _fetch(conn, project, new)


@guarded
def set_label_color(conn: sqlite3.Connection, project: str, name: str, color: str | None) -> Label:
    _check_color(color)
    with transaction(conn):
        label = _fetch(conn, project, name)
        conn.execute("UPDATE labels SET color = ?, updated_at = ? WHERE id = ?", (color, now_iso(), label.id))
        return _fetch(conn, project, name)


@guarded
def delete_label(conn: sqlite3.Connection, project: str, name: str) -> int:
    """Delete a label and its item links. Returns how many items lost it."""
    with transaction(conn):
        label = _fetch(conn, project, name)
        unlinked = conn.execute("DELETE FROM item_labels WHERE label_id = ?", (label.id,)).rowcount
        conn.execute("DELETE FROM labels WHERE id = ?", (label.id,))
    return unlinked


# ---------------------------------------------------------------------------
# Item links
# ---------------------------------------------------------------------------


@guarded
def add_label(conn: sqlite3.Connection, item_id: str, name: str) -> bool:
    """Tag an item, creating the label in the item's project if needed. False if already tagged."""
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        label = ensure_label(conn, item.project, name)
        cur = conn.execute(
            "INSERT OR IGNORE INTO item_labels (item_id, label_id) VALUES (?, ?)", (item.id, label.id)
        )
        return cur.rowcount > 0


@guarded
def remove_label(conn: sqlite3.Connection, item_id: str, name: str) -> None:
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        label = _fetch(conn, item.project, name)
        cur = conn.execute("DELETE FROM item_labels WHERE item_id = ? AND label_id = ?", (item.id, label.id))
        if cur.rowcount == 0:
            raise NotFoundError(f"{item.id} is not labeled {name}")


@guarded
def item_labels(conn: sqlite3.Connection, item_id: str) -> list[Label]:
    _helpers.fetch_item(conn, item_id)
    rows = conn.execute(
        "SELECT l.* FROM labels l JOIN item_labels il ON il.label_id = l.id WHERE il.item_id = ? ORDER BY l.name",
        (item_id,),
    ).fetchall()
    return [_row_to_label(r) for r in rows]
