"""Agent context, session bookkeeping, ownership and staleness queries."""

from __future__ import annotations

import datetime

from taskgraph.agent import (
    AgentContext,
    cleanup_agent_sessions,
    in_progress_by_agent,
    last_project_for_agent,
    record_agent_project_access,
    stale_items,
)
from taskgraph.config import Config
from taskgraph.items import block_item, complete_item, create_item, get_item, start_item
from taskgraph.projects import list_projects, project_status


def _ago(**delta) -> str:
    return (datetime.datetime.now() - datetime.timedelta(**delta)).isoformat()


class TestAgentContext:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AGENT_ID", "agent-7")
        monkeypatch.setenv("AGENT_TYPE", "codex")
        ctx = AgentContext.from_env()
        assert ctx == AgentContext("agent-7", "codex")
        assert ctx.is_set

    def test_empty_env(self):
        ctx = AgentContext.from_env()
        assert ctx.agent_id is None
        assert not ctx.is_set
        assert ctx.actor_type == "human"


class TestSessions:
    def test_last_project(self, conn):
        conn.execute(
            "INSERT INTO agent_sessions (agent_id, project, last_active) VALUES ('a', 'old', ?)", (_ago(hours=1),)
        )
        record_agent_project_access(conn, "a", "new")
        assert last_project_for_agent(conn, "a") == "new"
        assert last_project_for_agent(conn, "nobody") is None

    def test_cleanup_keeps_most_recent(self, conn):
        for i in range(25):
            conn.execute(
                "INSERT INTO agent_sessions (agent_id, project, last_active) VALUES (?, 'p', ?)",
                (f"agent-{i}", _ago(minutes=100 - i)),
            )
        assert cleanup_agent_sessions(conn) == 5
        remaining = {r[0] for r in conn.execute("SELECT agent_id FROM agent_sessions").fetchall()}
        assert "agent-24" in remaining
        assert "agent-0" not in remaining
        assert len(remaining) == 20


class TestOwnership:
    def test_in_progress_by_agent(self, conn):
        a = create_item(conn, "a", project="demo")
        b = create_item(conn, "b", project="demo")
        start_item(conn, a.id, AgentContext("agent-a"))
        start_item(conn, b.id, AgentContext("agent-b"))
        assert [i.id for i in in_progress_by_agent(conn, "agent-a")] == [a.id]

    def test_stale_items(self, conn):
        fresh = create_item(conn, "fresh", project="demo")
        old = create_item(conn, "old", project="demo")
        older = create_item(conn, "older", project="demo")
        idle = create_item(conn, "never started", project="demo")
        for item in (fresh, old, older):
            start_item(conn, item.id, AgentContext("agent-a"))
        conn.execute("UPDATE items SET agent_last_active = ? WHERE id = ?", (_ago(minutes=30), old.id))
        conn.execute("UPDATE items SET agent_last_active = ? WHERE id = ?", (_ago(hours=2), older.id))
        conn.execute("UPDATE items SET updated_at = ? WHERE id = ?", (_ago(hours=3), idle.id))

        stale = stale_items(conn, _ago(minutes=10), "demo")
        assert [i.id for i in stale] == [older.id, old.id]
        # read-only: nothing reassigned
        assert get_item(conn, old.id).agent_id == "agent-a"

    def test_stale_falls_back_to_updated_at(self, conn):
        item = create_item(conn, "x", project="demo")
        start_item(conn, item.id, AgentContext("agent-a"))
        conn.execute(
            "UPDATE items SET agent_last_active = NULL, updated_at = ? WHERE id = ?", (_ago(hours=1), item.id)
        )
        assert [i.id for i in stale_items(conn, _ago(minutes=5))] == [item.id]


class TestProjectStatus:
    def test_report(self, conn):
        mine = create_item(conn, "mine", project="demo")
        theirs = create_item(conn, "theirs", project="demo")
        waiting = create_item(conn, "waiting", project="demo")
        open_item = create_item(conn, "open", project="demo")
        start_item(conn, mine.id, AgentContext("me"))
        start_item(conn, theirs.id, AgentContext("you"))

        block_item(conn, waiting.id, "needs input")
        finished = create_item(conn, "finished", project="demo")
        complete_item(conn, finished.id, "ok")
        conn.execute("UPDATE items SET agent_last_active = ? WHERE id = ?", (_ago(hours=1), theirs.id))

        report = project_status(conn, "demo", agent_id="me", config=Config(stale_minutes=5))
        assert report.counts["in_progress"] == 2
        assert report.counts["ready"] == 1
        assert [i.id for i in report.ready] == [open_item.id]
        assert [i.id for i in report.in_progress_mine] == [mine.id]
        assert [i.id for i in report.in_progress_others] == [theirs.id]
        assert [i.id for i in report.blocked] == [waiting.id]
        assert [i.id for i in report.recently_done] == [finished.id]
        assert [i.id for i in report.stale] == [theirs.id]

    def test_list_projects(self, conn):
        create_item(conn, "a", project="beta")
        create_item(conn, "b", project="alpha")
        assert list_projects(conn) == ["alpha", "beta"]
