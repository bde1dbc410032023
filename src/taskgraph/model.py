"""Records returned by the library, plus the status/type vocabulary."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Vocabulary constants
# ---------------------------------------------------------------------------

TYPE_TASK = "task"
TYPE_EPIC = "epic"
VALID_TYPES = {TYPE_TASK, TYPE_EPIC}

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_DONE = "done"
STATUS_CANCELED = "canceled"
VALID_STATUSES = {STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_DONE, STATUS_CANCELED}
TERMINAL_STATUSES = {STATUS_DONE, STATUS_CANCELED}

VALID_PRIORITIES = {1, 2, 3}
DEFAULT_PRIORITY = 2


@dataclass
class Item:
    id: str
    project: str
    type: str
    title: str
    description: str = ""
    status: str = STATUS_OPEN
    priority: int = DEFAULT_PRIORITY
    parent_id: str | None = None
    agent_id: str | None = None
    agent_last_active: str | None = None
    template_id: str | None = None
    step_index: int | None = None
    variables: dict[str, str] | None = None
    template_hash: str | None = None
    results: str | None = None
    created_at: str = ""
    updated_at: str = ""
    closed_at: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Item:
        data = dict(row)
        raw_vars = data.get("variables")
        if raw_vars:
            try:
                data["variables"] = json.loads(raw_vars)
            except ValueError:
                log.warning("item %s: unreadable template variables: %r", data["id"], raw_vars)
                data["variables"] = None
        else:
            data["variables"] = None
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DepStatus:
    id: str
    title: str
    status: str
    inherited_from: str | None = None


@dataclass
class Edge:
    item_id: str
    depends_on: str
    item_title: str = ""
    item_status: str = ""
    depends_on_title: str = ""
    depends_on_status: str = ""


@dataclass
class LogEntry:
    id: int
    item_id: str
    message: str
    created_at: str


@dataclass
class HistoryEntry:
    id: int
    item_id: str
    project: str
    event_type: str
    actor_id: str | None
    actor_type: str | None
    changes: dict[str, Any] | None
    created_at: str


@dataclass
class Label:
    id: int
    project: str
    name: str
    color: str | None
    created_at: str
    updated_at: str


@dataclass
class Concept:
    name: str
    project: str
    summary: str | None
    last_updated: str
    learning_count: int = 0


@dataclass
class Learning:
    id: str
    project: str
    summary: str
    detail: str
    files: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    status: str = "active"
    task_id: str | None = None
    created_at: str = ""
    updated_at: str = ""
