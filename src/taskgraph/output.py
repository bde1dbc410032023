"""CLI output formatting: JSON by default, key/value text with --human."""
from __future__ import annotations

import dataclasses
import json
import sys
from pathlib import Path
from typing import Any

import click


def to_jsonable(value: Any) -> Any:
    """Turn library records (dataclasses, paths, tuples) into plain JSON values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


def output(data: dict[str, object], human: bool = False) -> None:
    """Print result as JSON (default) or human-readable text. Errors go to stderr, exit 1."""
    data = to_jsonable(data)
    if "error" in data:
        click.echo(json.dumps(data, indent=2, default=str), err=True)
        sys.exit(1)
    if human:
        for k, v in data.items():
            if isinstance(v, (list, dict)):
                click.echo(f"{k}: {json.dumps(v, indent=2, default=str)}")
            else:
                click.echo(f"{k}: {v}")
    else:
        click.echo(json.dumps(data, indent=2, default=str))
