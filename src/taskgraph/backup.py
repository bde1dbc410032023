"""Point-in-time snapshots of the store file, rotated to the N most recent."""

from __future__ import annotations

import datetime
import logging
import os
import secrets
import shutil
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from taskgraph.config import Config
from taskgraph.db import _get_db_path
from taskgraph.defaults import BACKUPS_DIR_NAME
from taskgraph.errors import NotFoundError, StorageError

log = logging.getLogger(__name__)

BACKUP_PREFIX = "tg-"
BACKUP_SUFFIX = ".db"


@dataclass
class BackupInfo:
    path: str
    size: int
    created_at: str


def backups_dir(db_path: str | None = None) -> Path:
    return Path(os.path.dirname(db_path or _get_db_path())) / BACKUPS_DIR_NAME


def _backup_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    files = [
        p for p in directory.iterdir()
        if p.is_file() and p.name.startswith(BACKUP_PREFIX) and p.name.endswith(BACKUP_SUFFIX)
    ]
    # Names embed a sortable timestamp
    return sorted(files, key=lambda p: p.name, reverse=True)


def backup(conn: sqlite3.Connection, db_path: str | None = None, config: Config | None = None) -> Path:
    """Snapshot the live store through SQLite's online backup API, then prune old snapshots."""
    config = config or Config()
    directory = backups_dir(db_path)
    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    target = directory / f"{BACKUP_PREFIX}{stamp}-{secrets.token_hex(2)}{BACKUP_SUFFIX}"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        dest = sqlite3.connect(str(target))
        try:
            conn.backup(dest)
        finally:
            dest.close()
    except (OSError, sqlite3.Error) as exc:
        raise StorageError(f"backup to {target} failed: {exc}") from exc
    log.debug("backup: wrote %s", target)
    prune_backups(db_path, config.backups_keep)
    return target


def prune_backups(db_path: str | None = None, keep: int = 10) -> list[Path]:
    """Delete all but the newest ``keep`` snapshots. Failures are logged, not raised."""
    removed: list[Path] = []
    for path in _backup_files(backups_dir(db_path))[keep:]:
        try:
            path.unlink()
            removed.append(path)
        except OSError as exc:
            log.warning("prune_backups: cannot remove %s: %s", path, exc)
    return removed


def list_backups(db_path: str | None = None) -> list[BackupInfo]:
    """Snapshots, newest first."""
    infos: list[BackupInfo] = []
    for path in _backup_files(backups_dir(db_path)):
        stat = path.stat()
        created = datetime.datetime.fromtimestamp(stat.st_mtime).isoformat()
        infos.append(BackupInfo(path=str(path), size=stat.st_size, created_at=created))
    return infos


def restore(backup_path: str | Path, db_path: str | None = None) -> Path:
    """Copy a snapshot over the store file. Close every connection first."""
    source = Path(backup_path)
    if not source.is_file():
        # Allow a bare file name from list_backups output
        candidate = backups_dir(db_path) / source.name
        if not candidate.is_file():
            raise NotFoundError(f"backup not found: {backup_path}")
        source = candidate
    target = Path(db_path or _get_db_path())
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        for sidecar in (Path(f"{target}-wal"), Path(f"{target}-shm")):
            if sidecar.exists():
                sidecar.unlink()
        shutil.copyfile(source, target)
    except OSError as exc:
        raise StorageError(f"restore from {source} failed: {exc}") from exc
    log.info("restore: %s -> %s", source, target)
    return target
