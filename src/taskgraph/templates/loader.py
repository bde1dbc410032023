"""YAML template loading and validation across the layered search path."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import yaml

from taskgraph.defaults import resolve_template_dirs
from taskgraph.errors import NotFoundError, TaskGraphError, ValidationError

from ._schema import TEMPLATE_EXTENSIONS, VALID_STEP_KEYS, VALID_TOP_KEYS, VALID_VARIABLE_KEYS
from .model import Step, Template, Variable

log = logging.getLogger(__name__)

INVALID_ID_CHARS = set("/\\*?[")


def _locations(dirs: list[Path] | None) -> list[tuple[str, Path]]:
    if dirs is None:
        return resolve_template_dirs()
    return [("custom", Path(d)) for d in dirs]


def _as_str_list(value: object, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, (str, int)) for v in value):
        raise ValidationError(f"{where} must be a list of step ids")
    return tuple(str(v) for v in value)


def parse_template(data: bytes, template_id: str, path: Path | None = None, source: str = "") -> Template:
    """Validate raw YAML bytes and build a Template. Hard fail on structural errors."""
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Template '{template_id}' is not valid YAML: {exc}") from exc
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Template '{template_id}' must be a YAML mapping")
    unknown = set(raw) - VALID_TOP_KEYS
    if unknown:
        raise ValidationError(f"Template '{template_id}' has unknown keys: {sorted(unknown)}")

    raw_vars = raw.get("variables") or {}
    if not isinstance(raw_vars, dict):
        raise ValidationError(f"Template '{template_id}': variables must be a mapping")
    variables: dict[str, Variable] = {}
    for name, entry in raw_vars.items():
        entry = entry or {}
        if not isinstance(entry, dict):
            raise ValidationError(f"Template '{template_id}': variable '{name}' must be a mapping")
        unknown_var = set(entry) - VALID_VARIABLE_KEYS
        if unknown_var:
            raise ValidationError(f"Template '{template_id}': variable '{name}' has unknown keys: {sorted(unknown_var)}")
        variables[str(name)] = Variable.from_raw(str(name), entry)

    raw_steps = raw.get("steps") or []
    if not isinstance(raw_steps, list):
        raise ValidationError(f"Template '{template_id}': steps must be a list")
    steps: list[Step] = []
    seen: set[str] = set()
    for i, entry in enumerate(raw_steps):
        if not isinstance(entry, dict):
            raise ValidationError(f"Template '{template_id}': step {i} must be a mapping")
        unknown_step = set(entry) - VALID_STEP_KEYS
        if unknown_step:
            raise ValidationError(f"Template '{template_id}': step {i} has unknown keys: {sorted(unknown_step)}")
        step_id = str(entry.get("id") or "")
        if step_id:
            if step_id in seen:
                raise ValidationError(f"duplicate step id: {step_id}")
            seen.add(step_id)
        steps.append(
            Step(
                id=step_id,
                title=str(entry.get("title") or ""),
                description=str(entry.get("description") or ""),
                depends=_as_str_list(entry.get("depends"), f"step {i} depends"),
            )
        )

    return Template(
        id=template_id,
        hash=hashlib.sha256(data).hexdigest(),
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        variables=variables,
        steps=tuple(steps),
        path=path,
        source=source,
    )


def load_template_file(path: str | Path, source: str = "") -> Template:
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise NotFoundError(f"cannot read template {path}: {exc}") from exc
    return parse_template(data, path.stem, path, source)


def _find_in_dir(directory: Path, template_id: str) -> Path | None:
    """Look for <id>.yaml/.yml directly in directory, then in its subdirectories."""
    for ext in TEMPLATE_EXTENSIONS:
        candidate = directory / f"{template_id}{ext}"
        if candidate.is_file():
            return candidate
    for ext in TEMPLATE_EXTENSIONS:
        for candidate in sorted(directory.rglob(f"{template_id}{ext}")):
            if candidate.is_file():
                return candidate
    return None


def find_template_path(template_id: str, dirs: list[Path] | None = None) -> tuple[Path, str]:
    locations = _locations(dirs)
    for source, directory in locations:
        if not directory.is_dir():
            continue
        found = _find_in_dir(directory, template_id)
        if found is not None:
            return found, source
    searched = ", ".join(str(d) for _, d in locations)
    raise NotFoundError(f"template not found: {template_id} (searched {searched})")


def load_template(template_id: str, dirs: list[Path] | None = None) -> Template:
    """Resolve a template id against the search path; the most local match wins."""
    if not template_id or template_id.startswith(".") or INVALID_ID_CHARS & set(template_id):
        raise ValidationError(f"invalid template id: {template_id!r}")
    path, source = find_template_path(template_id, dirs)
    return load_template_file(path, source)


def list_templates(dirs: list[Path] | None = None) -> list[Template]:
    """Every loadable template, shadowed ids resolved to their most local copy.

    Files that fail to load are skipped with a warning.
    """
    found: dict[str, Template] = {}
    for source, directory in _locations(dirs):
        if not directory.is_dir():
            continue
        for path in sorted(directory.rglob("*")):
            if path.suffix not in TEMPLATE_EXTENSIONS or not path.is_file():
                continue
            if path.stem in found:
                continue
            try:
                found[path.stem] = load_template_file(path, source)
            except TaskGraphError as exc:
                log.warning("list_templates: skipping %s: %s", path, exc)
    return sorted(found.values(), key=lambda t: t.id)
