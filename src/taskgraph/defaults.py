"""Shared constants: env var names, default paths, resolvers.

Single source of truth for path resolution across the store, config,
backups and template search.
"""

from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Env var names
# ---------------------------------------------------------------------------

ENV_DB_PATH = "TASKGRAPH_DB_PATH"
ENV_PROJECT = "TASKGRAPH_PROJECT"
ENV_TEMPLATES_DIR = "TASKGRAPH_TEMPLATES_DIR"
ENV_AGENT_ID = "AGENT_ID"
ENV_AGENT_TYPE = "AGENT_TYPE"

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------

# Project-local directory holding the store, config.yaml, backups and templates
WORK_DIR_NAME = ".taskgraph"
DB_FILE_NAME = "tasks.db"
CONFIG_FILE_NAME = "config.yaml"
BACKUPS_DIR_NAME = "backups"
TEMPLATES_DIR_NAME = "templates"

USER_TEMPLATES_DIR = "~/.config/taskgraph/templates"
GLOBAL_TEMPLATES_DIR = "~/.local/share/taskgraph/templates"

DEFAULT_PROJECT = "default"


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


def resolve_db_path() -> str:
    """Resolve DB path: ENV_DB_PATH > project-local .taskgraph/tasks.db."""
    explicit = os.getenv(ENV_DB_PATH)
    if explicit:
        return explicit
    return os.path.join(os.getcwd(), WORK_DIR_NAME, DB_FILE_NAME)


def resolve_project(explicit: str | None = None, configured: str | None = None) -> str:
    """Resolve project name: explicit arg > ENV_PROJECT > config > 'default'."""
    if explicit:
        return explicit
    return os.getenv(ENV_PROJECT) or configured or DEFAULT_PROJECT


def find_project_work_dir(start: str | Path | None = None) -> Path | None:
    """Walk up from start (or cwd) looking for a .taskgraph directory."""
    current = Path(start) if start else Path.cwd()
    current = current.resolve()
    for candidate in (current, *current.parents):
        work = candidate / WORK_DIR_NAME
        if work.is_dir():
            return work
    return None


def resolve_template_dirs(start: str | Path | None = None) -> list[tuple[str, Path]]:
    """Template search path as (source, dir), most local first: env > project > user > global."""
    dirs: list[tuple[str, Path]] = []
    env = os.getenv(ENV_TEMPLATES_DIR)
    if env:
        dirs.append(("env", Path(env).expanduser()))
    work = find_project_work_dir(start)
    if work is not None:
        dirs.append(("project", work / TEMPLATES_DIR_NAME))
    dirs.append(("user", Path(USER_TEMPLATES_DIR).expanduser()))
    dirs.append(("global", Path(GLOBAL_TEMPLATES_DIR).expanduser()))
    return dirs
