"""Status state machine: start, complete, block, cancel, reopen, forced writes.

Sanctioned flows:

    open | blocked      -> in_progress   start (refuses another agent's claim unless resume)
    non-terminal        -> done          complete (results required, deps must be done)
    non-terminal        -> blocked       block (reason logged)
    non-terminal        -> canceled      cancel (reason logged)
    in_progress|blocked -> open          release
    done | canceled     -> open          reopen

Anything else needs ``set_status(..., force=True)``.
"""

from __future__ import annotations

import logging
import sqlite3

from taskgraph.agent import SYSTEM, AgentContext, record_agent_project_access
from taskgraph.db import guarded, now_iso, transaction
from taskgraph.errors import ConflictError, ValidationError
from taskgraph.history import (
    EVENT_CANCELED,
    EVENT_COMPLETED,
    EVENT_REOPENED,
    EVENT_RESUMED,
    EVENT_STATUS_CHANGED,
    record_event,
)
from taskgraph.model import (
    STATUS_BLOCKED,
    STATUS_CANCELED,
    STATUS_DONE,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    TERMINAL_STATUSES,
    TYPE_EPIC,
    Item,
)

from . import _helpers

log = logging.getLogger(__name__)

AUTO_COMPLETE_RESULTS = "All child tasks completed"


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _add_log(conn: sqlite3.Connection, item_id: str, message: str) -> None:
    conn.execute(
        "INSERT INTO logs (item_id, message, created_at) VALUES (?, ?, ?)",
        (item_id, message, now_iso()),
    )


def _write_status(conn: sqlite3.Connection, item: Item, new_status: str, **extra: object) -> None:
    """Persist a status change, keeping ownership and closed_at consistent with it."""
    fields: dict[str, object] = {"status": new_status, **extra}
    if new_status != STATUS_IN_PROGRESS:
        fields["agent_id"] = None
        fields["agent_last_active"] = None
    if new_status in TERMINAL_STATUSES:
        fields.setdefault("closed_at", now_iso())
    else:
        fields["closed_at"] = None
    _helpers.update_fields(conn, item.id, **fields)


def _require_not_terminal(item: Item, action: str) -> None:
    if item.status in TERMINAL_STATUSES:
        raise ValidationError(f"cannot {action} {item.id}: item is {item.status} (reopen it first)")


def _check_children(conn: sqlite3.Connection, item: Item, override: bool) -> None:
    pending = _helpers.open_children(conn, item.id)
    if pending and not override:
        raise ConflictError(f"cannot close {item.id}: {len(pending)} open children ({', '.join(pending)})")


def _rollup_parent(conn: sqlite3.Connection, item: Item) -> list[str]:
    """Complete parent epics whose children are now all closed. Returns ids completed."""
    completed: list[str] = []
    parent_id = item.parent_id
    while parent_id:
        row = conn.execute("SELECT * FROM items WHERE id = ?", (parent_id,)).fetchone()
        if row is None:
            break
        parent = Item.from_row(row)
        if parent.type != TYPE_EPIC or parent.status in TERMINAL_STATUSES:
            break
        if _helpers.open_children(conn, parent.id):
            break
        if _helpers.unmet_dep_ids(conn, parent.id):
            log.debug("rollup: %s has unmet dependencies, not auto-completing", parent.id)
            break
        _write_status(conn, parent, STATUS_DONE, results=AUTO_COMPLETE_RESULTS)
        record_event(conn, parent.id, parent.project, EVENT_COMPLETED, {"results": AUTO_COMPLETE_RESULTS}, SYSTEM)
        completed.append(parent.id)
        parent_id = parent.parent_id
    return completed


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@guarded
def start_item(
    conn: sqlite3.Connection,
    item_id: str,
    actor: AgentContext | None = None,
    resume: bool = False,
) -> Item:
    """Move an item to in_progress and claim it for the acting agent.

    An item already in_progress is refused (naming the owner) unless
    ``resume`` is set, in which case the claim is re-stamped and a
    "Resumed" log entry appended without changing the status.
    """
    actor = actor or AgentContext()
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _require_not_terminal(item, "start")
        if item.type == TYPE_EPIC and _helpers.has_children(conn, item.id):
            raise ValidationError(f"cannot start epic {item.id}: start its child tasks instead")

        now = now_iso()
        if item.status == STATUS_IN_PROGRESS:
            if not resume:
                owner = item.agent_id
                claimed = f" (claimed by {owner})" if owner else ""
                raise ConflictError(f"{item.id} is already in progress{claimed}; use resume to take it over", owner=owner)
            _helpers.update_fields(conn, item.id, agent_id=actor.agent_id, agent_last_active=now)
            _add_log(conn, item.id, "Resumed")
            record_event(conn, item.id, item.project, EVENT_RESUMED, {"previous_agent": item.agent_id}, actor)
        else:
            _write_status(conn, item, STATUS_IN_PROGRESS, agent_id=actor.agent_id, agent_last_active=now)
            record_event(
                conn, item.id, item.project, EVENT_STATUS_CHANGED,
                {"from": item.status, "to": STATUS_IN_PROGRESS}, actor,
            )
        if actor.agent_id:
            record_agent_project_access(conn, actor.agent_id, item.project)
        return _helpers.fetch_item(conn, item.id)


@guarded
def complete_item(
    conn: sqlite3.Connection,
    item_id: str,
    results: str,
    actor: AgentContext | None = None,
    override: bool = False,
) -> Item:
    """Mark an item done with a results summary.

    Refused with ConflictError while a direct dependency or a child is not
    closed, unless ``override`` is set. Completing the last open child of an
    epic completes the epic too.
    """
    results = (results or "").strip()
    if not results:
        raise ValidationError("results are required to complete an item")
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _require_not_terminal(item, "complete")
        unmet = _helpers.unmet_dep_ids(conn, item.id)
        if unmet and not override:
            raise ConflictError(f"cannot complete {item.id}: unmet dependencies: {', '.join(unmet)}")
        _check_children(conn, item, override)

        _write_status(conn, item, STATUS_DONE, results=results)
        changes: dict[str, object] = {"from": item.status, "results": results}
        if override and unmet:
            changes["override"] = True
            changes["unmet"] = unmet
            log.info("complete_item: %s completed with unmet dependencies %s", item.id, unmet)
        record_event(conn, item.id, item.project, EVENT_COMPLETED, changes, actor)
        _rollup_parent(conn, item)
        return _helpers.fetch_item(conn, item.id)


@guarded
def block_item(conn: sqlite3.Connection, item_id: str, reason: str, actor: AgentContext | None = None) -> Item:
    """Mark an item blocked; the reason goes to its log."""
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _require_not_terminal(item, "block")
        _write_status(conn, item, STATUS_BLOCKED)
        _add_log(conn, item.id, f"Blocked: {reason}" if reason else "Blocked")
        record_event(
            conn, item.id, item.project, EVENT_STATUS_CHANGED,
            {"from": item.status, "to": STATUS_BLOCKED, "reason": reason}, actor,
        )
        return _helpers.fetch_item(conn, item.id)


@guarded
def cancel_item(conn: sqlite3.Connection, item_id: str, reason: str = "", actor: AgentContext | None = None) -> Item:
    """Cancel a non-terminal item; the reason goes to its log."""
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        _require_not_terminal(item, "cancel")
        _write_status(conn, item, STATUS_CANCELED)
        _add_log(conn, item.id, f"Canceled: {reason}" if reason else "Canceled")
        record_event(conn, item.id, item.project, EVENT_CANCELED, {"from": item.status, "reason": reason}, actor)
        return _helpers.fetch_item(conn, item.id)


@guarded
def release_item(conn: sqlite3.Connection, item_id: str, actor: AgentContext | None = None) -> Item:
    """Return an in_progress or blocked item to open, dropping its claim."""
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        if item.status not in (STATUS_IN_PROGRESS, STATUS_BLOCKED):
            raise ValidationError(f"cannot release {item.id}: item is {item.status}")
        _write_status(conn, item, STATUS_OPEN)
        record_event(conn, item.id, item.project, EVENT_STATUS_CHANGED, {"from": item.status, "to": STATUS_OPEN}, actor)
        return _helpers.fetch_item(conn, item.id)


@guarded
def reopen_item(conn: sqlite3.Connection, item_id: str, actor: AgentContext | None = None) -> Item:
    """Bring a done or canceled item back to open, clearing its results."""
    with transaction(conn):
        item = _helpers.fetch_item(conn, item_id)
        if item.status not in TERMINAL_STATUSES:
            raise ValidationError(f"cannot reopen {item.id}: item is {item.status}, not done or canceled")
        _write_status(conn, item, STATUS_OPEN, results=None)
        record_event(conn, item.id, item.project, EVENT_REOPENED, {"from": item.status}, actor)
        return _helpers.fetch_item(conn, item.id)


# ---------------------------------------------------------------------------
# Generic entry point
# ---------------------------------------------------------------------------


@guarded
def set_status(
    conn: sqlite3.Connection,
    item_id: str,
    new_status: str,
    actor: AgentContext | None = None,
    force: bool = False,
    reason: str = "",
) -> Item:
    """Change status through the matching guarded flow, or write it directly with ``force``.

    ``done`` is only reachable through complete_item (results are required)
    unless forced.
    """
    _helpers.validate_status(new_status)
    if force:
        with transaction(conn):
            item = _helpers.fetch_item(conn, item_id)
            extra: dict[str, object] = {}
            if new_status == STATUS_IN_PROGRESS and actor and actor.agent_id:
                extra = {"agent_id": actor.agent_id, "agent_last_active": now_iso()}
            _write_status(conn, item, new_status, **extra)
            record_event(
                conn, item.id, item.project, EVENT_STATUS_CHANGED,
                {"from": item.status, "to": new_status, "forced": True, "reason": reason}, actor,
            )
            return _helpers.fetch_item(conn, item.id)

    item = _helpers.fetch_item(conn, item_id)
    if new_status == item.status:
        raise ValidationError(f"{item.id} is already {new_status}")
    if new_status == STATUS_IN_PROGRESS:
        return start_item(conn, item_id, actor)
    if new_status == STATUS_DONE:
        raise ValidationError(f"use complete with results to mark {item.id} done, or force the write")
    if new_status == STATUS_BLOCKED:
        return block_item(conn, item_id, reason, actor)
    if new_status == STATUS_CANCELED:
        return cancel_item(conn, item_id, reason, actor)
    if item.status in TERMINAL_STATUSES:
        return reopen_item(conn, item_id, actor)
    return release_item(conn, item_id, actor)
