"""Item store: creation, reads, edits, cascading delete."""

from __future__ import annotations

import re
import sqlite3

import pytest

from taskgraph.agent import AgentContext
from taskgraph.config import Config
from taskgraph.errors import NotFoundError, StorageError, ValidationError
from taskgraph.graph.deps import add_edge
from taskgraph.history import get_item_history
from taskgraph.items import (
    add_log,
    append_description,
    clear_parent,
    create_item,
    delete_item,
    get_item,
    get_logs,
    list_items,
    set_description,
    set_parent,
    set_priority,
    set_title,
    start_item,
)
from taskgraph.items import _helpers
from taskgraph.labels import add_label, item_labels


class TestCreateItem:
    def test_task_id_format(self, conn):
        item = create_item(conn, "Write parser", project="demo")
        assert re.fullmatch(r"ts-[0-9a-f]{6}", item.id)
        assert item.status == "open"
        assert item.priority == 2
        assert item.type == "task"
        assert item.project == "demo"

    def test_epic_uses_epic_prefix(self, conn):
        item = create_item(conn, "Release", project="demo", item_type="epic")
        assert item.id.startswith("ep-")

    def test_custom_prefixes_from_config(self, conn):
        cfg = Config(task_prefix="job", epic_prefix="big")
        assert create_item(conn, "a", project="demo", config=cfg).id.startswith("job-")
        assert create_item(conn, "b", project="demo", item_type="epic", config=cfg).id.startswith("big-")

    def test_project_row_created(self, conn):
        create_item(conn, "x", project="alpha")
        row = conn.execute("SELECT name FROM projects WHERE name = 'alpha'").fetchone()
        assert row is not None

    def test_default_project(self, conn):
        assert create_item(conn, "x").project == "default"

    def test_project_from_env(self, conn, monkeypatch):
        monkeypatch.setenv("TASKGRAPH_PROJECT", "envproj")
        assert create_item(conn, "x").project == "envproj"

    @pytest.mark.parametrize("title", ["", "   "])
    def test_empty_title_rejected(self, conn, title):
        with pytest.raises(ValidationError):
            create_item(conn, title, project="demo")

    def test_bad_type_rejected(self, conn):
        with pytest.raises(ValidationError):
            create_item(conn, "x", project="demo", item_type="story")

    @pytest.mark.parametrize("priority", [0, 4, True])
    def test_bad_priority_rejected(self, conn, priority):
        with pytest.raises(ValidationError):
            create_item(conn, "x", project="demo", priority=priority)

    def test_validation_writes_nothing(self, conn):
        with pytest.raises(ValidationError):
            create_item(conn, "x", project="demo", priority=9)
        assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 0

    def test_missing_parent(self, conn):
        with pytest.raises(NotFoundError):
            create_item(conn, "child", project="demo", parent_id="ep-000000")

    def test_parent_type_not_checked(self, conn):
        task = create_item(conn, "plain task", project="demo")
        child = create_item(conn, "child", project="demo", parent_id=task.id)
        assert child.parent_id == task.id

    def test_records_created_event(self, conn):
        item = create_item(conn, "x", project="demo", actor=AgentContext("agent-1", "claude"))
        history = get_item_history(conn, item.id)
        assert [h.event_type for h in history] == ["created"]
        assert history[0].actor_id == "agent-1"
        assert history[0].actor_type == "claude"
        assert history[0].changes["title"] == "x"

    def test_id_collision_retried(self, conn, monkeypatch):
        monkeypatch.setattr(_helpers, "random_suffix", lambda: "aaaaaa")
        first = create_item(conn, "first", project="demo")
        assert first.id == "ts-aaaaaa"

        suffixes = iter(["aaaaaa", "aaaaaa", "bbbbbb"])
        monkeypatch.setattr(_helpers, "random_suffix", lambda: next(suffixes))
        second = create_item(conn, "second", project="demo")
        assert second.id == "ts-bbbbbb"

    def test_id_collision_exhausted(self, conn, monkeypatch):
        monkeypatch.setattr(_helpers, "random_suffix", lambda: "cccccc")
        create_item(conn, "first", project="demo")
        with pytest.raises(StorageError):
            create_item(conn, "second", project="demo")
        assert conn.execute("SELECT COUNT(*) FROM items").fetchone()[0] == 1


class TestGetAndList:
    def test_get_missing(self, conn):
        with pytest.raises(NotFoundError):
            get_item(conn, "ts-ffffff")

    def test_list_filters(self, conn):
        epic = create_item(conn, "epic", project="demo", item_type="epic")
        a = create_item(conn, "a", project="demo", parent_id=epic.id)
        b = create_item(conn, "b", project="demo", priority=1)
        create_item(conn, "other project", project="else")

        assert {i.id for i in list_items(conn, project="demo")} == {epic.id, a.id, b.id}
        assert [i.id for i in list_items(conn, project="demo", parent_id=epic.id)] == [a.id]
        assert [i.id for i in list_items(conn, project="demo", item_type="epic")] == [epic.id]
        # priority 1 first
        assert list_items(conn, project="demo")[0].id == b.id

    def test_list_status_filter_validated(self, conn):
        with pytest.raises(ValidationError):
            list_items(conn, status="finished")

    def test_list_blocker_filters(self, conn):
        a = create_item(conn, "a", project="demo")
        b = create_item(conn, "b", project="demo")
        c = create_item(conn, "c", project="demo")
        add_edge(conn, b.id, a.id)

        assert [i.id for i in list_items(conn, blocking=b.id)] == [a.id]
        assert [i.id for i in list_items(conn, blocked_by=a.id)] == [b.id]
        assert [i.id for i in list_items(conn, has_blockers=True)] == [b.id]
        assert {i.id for i in list_items(conn, no_blockers=True)} == {a.id, c.id}

    def test_list_labels_all_must_match(self, conn):
        a = create_item(conn, "a", project="demo")
        b = create_item(conn, "b", project="demo")
        add_label(conn, a.id, "backend")
        add_label(conn, a.id, "urgent")
        add_label(conn, b.id, "backend")

        assert {i.id for i in list_items(conn, labels=["backend"])} == {a.id, b.id}
        assert [i.id for i in list_items(conn, labels=["backend", "urgent"])] == [a.id]


class TestEdits:
    def test_set_title(self, conn):
        item = create_item(conn, "old", project="demo")
        updated = set_title(conn, item.id, "new")
        assert updated.title == "new"
        event = get_item_history(conn, item.id)[0]
        assert event.event_type == "title_changed"
        assert event.changes == {"from": "old", "to": "new"}

    def test_descriptions(self, conn):
        item = create_item(conn, "x", project="demo")
        assert append_description(conn, item.id, "first").description == "first"
        assert append_description(conn, item.id, "second").description == "first\n\nsecond"
        assert set_description(conn, item.id, "fresh").description == "fresh"

    def test_set_priority(self, conn):
        item = create_item(conn, "x", project="demo")
        assert set_priority(conn, item.id, 1).priority == 1
        with pytest.raises(ValidationError):
            set_priority(conn, item.id, 5)

    def test_parent_edits(self, conn):
        parent = create_item(conn, "parent", project="demo")
        item = create_item(conn, "x", project="demo")
        assert set_parent(conn, item.id, parent.id).parent_id == parent.id
        assert clear_parent(conn, item.id).parent_id is None
        with pytest.raises(NotFoundError):
            set_parent(conn, item.id, "ts-000000")
        with pytest.raises(ValidationError):
            set_parent(conn, item.id, item.id)


class TestLogs:
    def test_logs_in_order(self, conn):
        item = create_item(conn, "x", project="demo")
        add_log(conn, item.id, "one")
        add_log(conn, item.id, "two")
        assert [entry.message for entry in get_logs(conn, item.id)] == ["one", "two"]

    def test_log_refreshes_last_active(self, conn):
        item = create_item(conn, "x", project="demo")
        start_item(conn, item.id, AgentContext("a1"))
        conn.execute("UPDATE items SET agent_last_active = '2020-01-01T00:00:00' WHERE id = ?", (item.id,))
        add_log(conn, item.id, "still here")
        assert get_item(conn, item.id).agent_last_active > "2020-01-01T00:00:00"

    def test_empty_log_rejected(self, conn):
        item = create_item(conn, "x", project="demo")
        with pytest.raises(ValidationError):
            add_log(conn, item.id, "  ")


class TestDelete:
    def test_cascade(self, conn):
        parent = create_item(conn, "parent", project="demo")
        item = create_item(conn, "doomed", project="demo")
        child = create_item(conn, "child", project="demo", parent_id=item.id)
        other = create_item(conn, "other", project="demo")
        add_edge(conn, item.id, parent.id)
        add_edge(conn, other.id, item.id)
        add_log(conn, item.id, "note")
        add_label(conn, item.id, "x")

        result = delete_item(conn, item.id)

        assert result["edges_removed"] == 2
        assert result["children_detached"] == 1
        with pytest.raises(NotFoundError):
            get_item(conn, item.id)
        assert conn.execute("SELECT COUNT(*) FROM deps").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM logs WHERE item_id = ?", (item.id,)).fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM item_labels").fetchone()[0] == 0
        assert get_item(conn, child.id).parent_id is None
        assert item_labels(conn, other.id) == []

    def test_history_survives(self, conn):
        item = create_item(conn, "doomed", project="demo")
        delete_item(conn, item.id)
        events = [h.event_type for h in get_item_history(conn, item.id)]
        assert events == ["deleted", "created"]

    def test_delete_missing(self, conn):
        with pytest.raises(NotFoundError):
            delete_item(conn, "ts-404404")


def test_storage_errors_are_wrapped(conn):
    conn.execute("DROP TABLE items")
    with pytest.raises(StorageError) as excinfo:
        get_item(conn, "ts-000000")
    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
