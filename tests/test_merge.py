"""Merging one item into another."""

from __future__ import annotations

import pytest

from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.graph import add_edge, list_deps
from taskgraph.history import get_item_history
from taskgraph.items import add_log, children, create_item, get_item, get_logs, merge_items
from taskgraph.labels import add_label, item_labels
from taskgraph.learnings import create_learning, get_learning


def _task(conn, title, **kwargs):
    kwargs.setdefault("project", "demo")
    return create_item(conn, title, **kwargs)


class TestMerge:
    def test_edges_move_both_ways(self, conn):
        upstream, shared = _task(conn, "upstream"), _task(conn, "shared")
        downstream = _task(conn, "downstream")
        source, target = _task(conn, "source"), _task(conn, "target")
        add_edge(conn, source.id, upstream.id)
        add_edge(conn, source.id, shared.id)
        add_edge(conn, target.id, shared.id)
        add_edge(conn, downstream.id, source.id)

        result = merge_items(conn, source.id, target.id)
        assert result["merged"] == source.id
        assert result["deps_moved"] == 2
        assert list_deps(conn, target.id) == [shared.id, upstream.id]
        assert list_deps(conn, downstream.id) == [target.id]
        with pytest.raises(NotFoundError):
            get_item(conn, source.id)

    def test_logs_labels_description(self, conn):
        source = _task(conn, "source", description="source notes")
        target = _task(conn, "target", description="target notes")
        add_log(conn, target.id, "target log")
        add_log(conn, source.id, "source log")
        add_label(conn, source.id, "api")
        add_label(conn, target.id, "api")
        add_label(conn, source.id, "urgent")

        result = merge_items(conn, source.id, target.id)
        assert [entry.message for entry in get_logs(conn, target.id)] == [
            "target log",
            "source log",
            f"Merged from {source.id}: source",
        ]
        assert [label.name for label in item_labels(conn, target.id)] == ["api", "urgent"]
        assert result["item"].description == f"target notes\n\n---\nMerged from {source.id}:\nsource notes"

    def test_description_into_empty_target(self, conn):
        source = _task(conn, "source", description="only text")
        target = _task(conn, "target")
        assert merge_items(conn, source.id, target.id)["item"].description == "only text"

    def test_children_and_learnings_follow(self, conn):
        source = _task(conn, "source", item_type="epic")
        target = _task(conn, "target", item_type="epic")
        kid = _task(conn, "kid", parent_id=source.id)
        learning = create_learning(conn, "demo", "note", task_id=source.id)

        result = merge_items(conn, source.id, target.id)
        assert result["children_moved"] == 1
        assert [c.id for c in children(conn, target.id)] == [kid.id]
        assert get_learning(conn, learning.id).task_id == target.id

    def test_target_child_of_source(self, conn):
        grandparent = _task(conn, "grandparent", item_type="epic")
        source = _task(conn, "source", item_type="epic", parent_id=grandparent.id)
        target = _task(conn, "target", parent_id=source.id)
        merged = merge_items(conn, source.id, target.id)["item"]
        assert merged.parent_id == grandparent.id

    def test_history(self, conn):
        source, target = _task(conn, "source"), _task(conn, "target")
        merge_items(conn, source.id, target.id)
        merged = get_item_history(conn, target.id)[0]
        assert merged.event_type == "merged"
        assert merged.changes["source"] == source.id
        deleted = get_item_history(conn, source.id)[0]
        assert deleted.event_type == "deleted"
        assert deleted.changes["merged_into"] == target.id


class TestMergeRefused:
    def test_into_itself(self, conn):
        item = _task(conn, "x")
        with pytest.raises(ValidationError, match="into itself"):
            merge_items(conn, item.id, item.id)

    def test_source_depends_on_target(self, conn):
        source, target = _task(conn, "source"), _task(conn, "target")
        add_edge(conn, source.id, target.id)
        with pytest.raises(ValidationError, match="depends on"):
            merge_items(conn, source.id, target.id)
        assert list_deps(conn, source.id) == [target.id]

    def test_target_depends_on_source(self, conn):
        source, target = _task(conn, "source"), _task(conn, "target")
        add_edge(conn, target.id, source.id)
        with pytest.raises(ValidationError):
            merge_items(conn, source.id, target.id)

    def test_transitive_self_dependency(self, conn):
        source, target, middle = _task(conn, "source"), _task(conn, "target"), _task(conn, "middle")
        add_edge(conn, source.id, middle.id)
        add_edge(conn, middle.id, target.id)
        with pytest.raises(ValidationError, match="transitively"):
            merge_items(conn, source.id, target.id)
        assert get_item(conn, source.id).title == "source"

    def test_missing_item(self, conn):
        target = _task(conn, "target")
        with pytest.raises(NotFoundError):
            merge_items(conn, "ts-000000", target.id)
