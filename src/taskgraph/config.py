"""Store-local settings loaded from ``config.yaml`` next to the DB file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from taskgraph.defaults import CONFIG_FILE_NAME, resolve_db_path
from taskgraph.errors import ValidationError

VALID_TOP_KEYS = {"default_project", "prefixes", "backups", "history", "stale_minutes"}
VALID_PREFIX_KEYS = {"task", "epic"}
VALID_BACKUP_KEYS = {"keep"}
VALID_HISTORY_KEYS = {"keep_all_hours", "status_days", "other_days"}


@dataclass(frozen=True)
class Config:
    default_project: str | None = None
    task_prefix: str = "ts"
    epic_prefix: str = "ep"
    backups_keep: int = 10
    history_keep_all_hours: int = 24
    history_status_days: int = 30
    history_other_days: int = 7
    stale_minutes: int = 5

    def prefix_for(self, item_type: str) -> str:
        return self.epic_prefix if item_type == "epic" else self.task_prefix


def config_path(db_path: str | None = None) -> Path:
    return Path(os.path.dirname(db_path or resolve_db_path())) / CONFIG_FILE_NAME


def _section(raw: dict, key: str, valid: set[str]) -> dict:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise ValidationError(f"config '{key}' must be a mapping")
    unknown = set(value) - valid
    if unknown:
        raise ValidationError(f"config '{key}' has unknown keys: {sorted(unknown)}")
    return value


def _positive_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"config '{name}' must be a non-negative integer, got {value!r}")
    return value


def parse_config(raw: dict | None) -> Config:
    """Validate a decoded YAML mapping and build a Config."""
    if raw is None:
        return Config()
    if not isinstance(raw, dict):
        raise ValidationError("Top-level config must be a YAML mapping")
    unknown = set(raw) - VALID_TOP_KEYS
    if unknown:
        raise ValidationError(f"config has unknown keys: {sorted(unknown)}")

    defaults = Config()
    prefixes = _section(raw, "prefixes", VALID_PREFIX_KEYS)
    backups = _section(raw, "backups", VALID_BACKUP_KEYS)
    history = _section(raw, "history", VALID_HISTORY_KEYS)

    task_prefix = str(prefixes.get("task", defaults.task_prefix))
    epic_prefix = str(prefixes.get("epic", defaults.epic_prefix))
    if not task_prefix or not epic_prefix:
        raise ValidationError("config prefixes must be non-empty")

    return Config(
        default_project=raw.get("default_project") or None,
        task_prefix=task_prefix,
        epic_prefix=epic_prefix,
        backups_keep=_positive_int(backups.get("keep", defaults.backups_keep), "backups.keep"),
        history_keep_all_hours=_positive_int(
            history.get("keep_all_hours", defaults.history_keep_all_hours), "history.keep_all_hours"
        ),
        history_status_days=_positive_int(
            history.get("status_days", defaults.history_status_days), "history.status_days"
        ),
        history_other_days=_positive_int(
            history.get("other_days", defaults.history_other_days), "history.other_days"
        ),
        stale_minutes=_positive_int(raw.get("stale_minutes", defaults.stale_minutes), "stale_minutes"),
    )


def load_config(db_path: str | None = None) -> Config:
    """Load config.yaml beside the store. Missing file means all defaults."""
    path = config_path(db_path)
    if not path.exists():
        return Config()
    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ValidationError(f"Cannot parse {path}: {exc}") from exc
    return parse_config(raw)
