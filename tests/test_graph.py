"""Dependency graph: edges, readiness, traversal, cycles."""

from __future__ import annotations

import pytest

from taskgraph.agent import AgentContext
from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.graph import (
    add_edge,
    all_dep_statuses,
    all_edges,
    ancestor_dep_statuses,
    blocked_by,
    dep_statuses,
    dependency_chain,
    find_cycles,
    find_parent_child_cycles,
    fix_parent_child_cycles,
    has_unmet_deps,
    impact,
    list_deps,
    ready_items,
    remove_edge,
    reverse_chain,
)
from taskgraph.history import get_item_history
from taskgraph.items import cancel_item, complete_item, create_item, get_item, get_logs, start_item
from taskgraph.labels import add_label


def _task(conn, title, **kwargs):
    kwargs.setdefault("project", "demo")
    return create_item(conn, title, **kwargs)


class TestAddEdge:
    def test_self_edge_rejected(self, conn):
        a = _task(conn, "a")
        with pytest.raises(ValidationError):
            add_edge(conn, a.id, a.id)
        assert list_deps(conn, a.id) == []

    def test_missing_endpoints(self, conn):
        a = _task(conn, "a")
        with pytest.raises(NotFoundError):
            add_edge(conn, a.id, "ts-000000")
        with pytest.raises(NotFoundError):
            add_edge(conn, "ts-000000", a.id)
        assert conn.execute("SELECT COUNT(*) FROM deps").fetchone()[0] == 0

    def test_duplicate_is_noop(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        assert add_edge(conn, b.id, a.id) is True
        assert add_edge(conn, b.id, a.id) is False
        assert list_deps(conn, b.id) == [a.id]
        events = [h.event_type for h in get_item_history(conn, b.id)]
        assert events.count("dependency_added") == 1

    def test_deps_in_insertion_order(self, conn):
        a, b, c, d = (_task(conn, t) for t in "abcd")
        add_edge(conn, d.id, c.id)
        add_edge(conn, d.id, a.id)
        add_edge(conn, d.id, b.id)
        assert list_deps(conn, d.id) == [c.id, a.id, b.id]

    def test_in_progress_reverts_on_unmet_dep(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        start_item(conn, b.id, AgentContext("agent-a"))
        add_edge(conn, b.id, a.id)
        reverted = get_item(conn, b.id)
        assert reverted.status == "open"
        assert reverted.agent_id is None
        assert "Reverted to open" in get_logs(conn, b.id)[-1].message

    def test_in_progress_kept_when_dep_done(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        complete_item(conn, a.id, "ok")
        start_item(conn, b.id, AgentContext("agent-a"))
        add_edge(conn, b.id, a.id)
        assert get_item(conn, b.id).status == "in_progress"

    def test_cycle_allowed(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        add_edge(conn, a.id, b.id)
        add_edge(conn, b.id, c.id)
        assert add_edge(conn, c.id, a.id) is True
        assert ready_items(conn, "demo") == []
        cycles = find_cycles(conn, "demo")
        assert len(cycles) == 1
        assert sorted(cycles[0]) == sorted([a.id, b.id, c.id])
        assert cycles[0][0] == min(a.id, b.id, c.id)


class TestRemoveEdge:
    def test_remove(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        add_edge(conn, b.id, a.id)
        remove_edge(conn, b.id, a.id)
        assert list_deps(conn, b.id) == []
        assert get_item_history(conn, b.id)[0].event_type == "dependency_removed"

    def test_remove_missing(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        with pytest.raises(NotFoundError):
            remove_edge(conn, b.id, a.id)


class TestQueries:
    def test_dep_statuses_and_unmet(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        add_edge(conn, c.id, a.id)
        add_edge(conn, c.id, b.id)
        complete_item(conn, a.id, "ok")
        statuses = dep_statuses(conn, c.id)
        assert [(s.id, s.status) for s in statuses] == [(a.id, "done"), (b.id, "open")]
        assert statuses[0].title == "a"
        assert has_unmet_deps(conn, c.id) is True
        cancel_item(conn, b.id)
        # canceled is not done
        assert has_unmet_deps(conn, c.id) is True

    def test_blocked_by(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        add_edge(conn, b.id, a.id)
        assert [s.id for s in blocked_by(conn, a.id)] == [b.id]

    def test_chains(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        add_edge(conn, c.id, b.id)
        add_edge(conn, b.id, a.id)
        assert dependency_chain(conn, c.id) == [(b.id, 1), (a.id, 2)]
        assert reverse_chain(conn, a.id) == [(b.id, 1), (c.id, 2)]
        assert dependency_chain(conn, c.id, max_depth=1) == [(b.id, 1)]

    def test_impact(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        d = _task(conn, "d")
        add_edge(conn, b.id, a.id)
        add_edge(conn, c.id, a.id)
        add_edge(conn, c.id, d.id)
        assert [(i.id, depth) for i, depth in impact(conn, a.id)] == [(b.id, 1)]

    def test_impact_follows_chain(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        add_edge(conn, b.id, a.id)
        add_edge(conn, c.id, b.id)
        assert [(i.id, depth) for i, depth in impact(conn, a.id)] == [(b.id, 1), (c.id, 2)]

    def test_impact_stops_at_outside_blocker(self, conn):
        a, b, c, d = _task(conn, "a"), _task(conn, "b"), _task(conn, "c"), _task(conn, "d")
        outside = _task(conn, "outside")
        add_edge(conn, b.id, a.id)
        add_edge(conn, c.id, a.id)
        add_edge(conn, c.id, outside.id)
        add_edge(conn, d.id, b.id)
        add_edge(conn, d.id, c.id)
        # d waits on c, which still waits on an item outside the chain
        assert [i.id for i, _ in impact(conn, a.id)] == [b.id]

    def test_impact_diamond_and_priority(self, conn):
        a = _task(conn, "a")
        low, high = _task(conn, "low", priority=3), _task(conn, "high", priority=1)
        join = _task(conn, "join")
        add_edge(conn, low.id, a.id)
        add_edge(conn, high.id, a.id)
        add_edge(conn, join.id, low.id)
        add_edge(conn, join.id, high.id)
        assert [(i.id, depth) for i, depth in impact(conn, a.id)] == [(high.id, 1), (low.id, 1), (join.id, 2)]

    def test_impact_skips_items_already_ready(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        add_edge(conn, b.id, a.id)
        complete_item(conn, a.id, "shipped")
        assert impact(conn, a.id) == []

    def test_all_edges_scoped_to_project(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        x, y = _task(conn, "x", project="other"), _task(conn, "y", project="other")
        add_edge(conn, b.id, a.id)
        add_edge(conn, y.id, x.id)
        edges = all_edges(conn, "demo")
        assert [(e.item_id, e.depends_on) for e in edges] == [(b.id, a.id)]
        assert edges[0].depends_on_title == "a"
        assert len(all_edges(conn)) == 2


class TestReady:
    def test_priority_then_creation_order(self, conn):
        low = _task(conn, "low", priority=3)
        high = _task(conn, "high", priority=1)
        mid_first = _task(conn, "mid first")
        mid_second = _task(conn, "mid second")
        assert [i.id for i in ready_items(conn, "demo")] == [high.id, mid_first.id, mid_second.id, low.id]

    def test_readiness_tracks_dependency_status(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        add_edge(conn, b.id, a.id)
        assert [i.id for i in ready_items(conn, "demo")] == [a.id]
        start_item(conn, a.id, AgentContext("agent-a"))
        assert ready_items(conn, "demo") == []
        complete_item(conn, a.id, "ok")
        assert [i.id for i in ready_items(conn, "demo")] == [b.id]

    def test_only_open_items(self, conn):
        a, b, c = _task(conn, "a"), _task(conn, "b"), _task(conn, "c")
        start_item(conn, a.id, AgentContext("agent-a"))
        cancel_item(conn, b.id)
        assert [i.id for i in ready_items(conn, "demo")] == [c.id]

    def test_label_filter(self, conn):
        a, b = _task(conn, "a"), _task(conn, "b")
        add_label(conn, a.id, "api")
        add_label(conn, a.id, "p0")
        add_label(conn, b.id, "api")
        assert [i.id for i in ready_items(conn, "demo", ["api", "p0"])] == [a.id]
        assert {i.id for i in ready_items(conn, "demo", ["api"])} == {a.id, b.id}

    def test_project_scope(self, conn):
        a = _task(conn, "a")
        _task(conn, "elsewhere", project="other")
        assert [i.id for i in ready_items(conn, "demo")] == [a.id]


class TestInheritedDeps:
    def test_ancestor_epic_deps(self, conn):
        blocker = _task(conn, "blocker")
        finished = _task(conn, "finished")
        outer = _task(conn, "outer", item_type="epic")
        inner = _task(conn, "inner", item_type="epic", parent_id=outer.id)
        leaf = _task(conn, "leaf", parent_id=inner.id)
        own = _task(conn, "own")
        add_edge(conn, outer.id, blocker.id)
        add_edge(conn, inner.id, finished.id)
        complete_item(conn, finished.id, "done")
        add_edge(conn, leaf.id, own.id)

        inherited = ancestor_dep_statuses(conn, leaf.id)
        assert [(d.id, d.inherited_from) for d in inherited] == [(blocker.id, outer.id)]

        combined = all_dep_statuses(conn, leaf.id)
        assert [(d.id, d.inherited_from) for d in combined] == [(own.id, None), (blocker.id, outer.id)]

    def test_display_only(self, conn):
        blocker = _task(conn, "blocker")
        epic = _task(conn, "epic", item_type="epic")
        leaf = _task(conn, "leaf", parent_id=epic.id)
        add_edge(conn, epic.id, blocker.id)
        assert leaf.id in [i.id for i in ready_items(conn, "demo")]
        assert not has_unmet_deps(conn, leaf.id)

    def test_task_parents_ignored(self, conn):
        blocker = _task(conn, "blocker")
        parent = _task(conn, "plain parent")
        child = _task(conn, "child", parent_id=parent.id)
        add_edge(conn, parent.id, blocker.id)
        assert ancestor_dep_statuses(conn, child.id) == []


class TestParentChildCycles:
    def test_find_and_fix(self, conn):
        epic = _task(conn, "epic", item_type="epic")
        kid = _task(conn, "kid", parent_id=epic.id)
        other = _task(conn, "other", parent_id=epic.id)
        unrelated = _task(conn, "unrelated")
        add_edge(conn, epic.id, kid.id)
        add_edge(conn, other.id, epic.id)
        add_edge(conn, other.id, kid.id)
        add_edge(conn, unrelated.id, kid.id)

        found = find_parent_child_cycles(conn, "demo")
        assert found == [(epic.id, kid.id), (other.id, epic.id)]

        assert fix_parent_child_cycles(conn, "demo") == found
        assert find_parent_child_cycles(conn) == []
        assert list_deps(conn, other.id) == [kid.id]
        assert list_deps(conn, unrelated.id) == [kid.id]
        assert get_item_history(conn, epic.id)[0].changes["reason"] == "parent/child cycle"

    def test_nothing_to_fix(self, conn):
        assert fix_parent_child_cycles(conn) == []
