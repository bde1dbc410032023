"""Shared fixtures: every test gets its own store file."""

from __future__ import annotations

import pytest

from taskgraph.db import get_db, init_db, reset_db_path


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point the store, HOME and cwd at tmp_path so nothing leaks between tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for var in ("TASKGRAPH_PROJECT", "TASKGRAPH_TEMPLATES_DIR", "AGENT_ID", "AGENT_TYPE"):
        monkeypatch.delenv(var, raising=False)
    db_file = tmp_path / ".taskgraph" / "tasks.db"
    monkeypatch.setenv("TASKGRAPH_DB_PATH", str(db_file))
    reset_db_path()
    yield
    reset_db_path()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / ".taskgraph" / "tasks.db")
    init_db()
    return path


@pytest.fixture
def conn(db_path):
    connection = get_db()
    yield connection
    connection.close()
