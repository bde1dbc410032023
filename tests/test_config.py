"""config.yaml loading and validation."""

from __future__ import annotations

import pytest

from taskgraph.config import Config, load_config, parse_config
from taskgraph.errors import ValidationError


def test_missing_file_gives_defaults(tmp_path):
    assert load_config(str(tmp_path / "tasks.db")) == Config()


def test_full_file(tmp_path):
    (tmp_path / "config.yaml").write_text(
        "default_project: web\n"
        "prefixes:\n  task: tk\n  epic: ek\n"
        "backups:\n  keep: 3\n"
        "history:\n  keep_all_hours: 12\n  status_days: 60\n  other_days: 2\n"
        "stale_minutes: 15\n"
    )
    cfg = load_config(str(tmp_path / "tasks.db"))
    assert cfg.default_project == "web"
    assert cfg.prefix_for("task") == "tk"
    assert cfg.prefix_for("epic") == "ek"
    assert cfg.backups_keep == 3
    assert (cfg.history_keep_all_hours, cfg.history_status_days, cfg.history_other_days) == (12, 60, 2)
    assert cfg.stale_minutes == 15


def test_default_path_follows_db_env(tmp_path):
    store_dir = tmp_path / ".taskgraph"
    store_dir.mkdir()
    (store_dir / "config.yaml").write_text("stale_minutes: 9\n")
    assert load_config().stale_minutes == 9


@pytest.mark.parametrize(
    "raw",
    [
        {"colour": "blue"},
        {"prefixes": {"story": "st"}},
        {"backups": {"keep": -1}},
        {"history": "forever"},
        {"stale_minutes": "soon"},
        {"prefixes": {"task": ""}},
        ["not", "a", "mapping"],
    ],
)
def test_invalid(raw):
    with pytest.raises(ValidationError):
        parse_config(raw)


def test_unparseable_yaml(tmp_path):
    (tmp_path / "config.yaml").write_text("prefixes: [oops\n")
    with pytest.raises(ValidationError):
        load_config(str(tmp_path / "tasks.db"))
