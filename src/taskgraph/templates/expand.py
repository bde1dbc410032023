"""Template expansion: bind variables, validate structure, create the item graph.

All validation happens before the first write. The writes themselves run
in one transaction, so a failure part-way leaves no items, edges or
history behind.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from taskgraph.agent import AgentContext
from taskgraph.config import Config
from taskgraph.db import guarded, transaction
from taskgraph.errors import NotFoundError, ValidationError
from taskgraph.graph.deps import add_edge
from taskgraph.items.create_item import create_item
from taskgraph.model import DEFAULT_PRIORITY, TYPE_EPIC, TYPE_TASK, Item

from .loader import load_template
from .model import Step, Template
from .render import render_text, render_title, sanitize_title

log = logging.getLogger(__name__)

STEP_ID_LENGTH = 3
_STEP_ID_ALPHABET = string.ascii_lowercase + string.digits


def random_step_id() -> str:
    return "".join(secrets.choice(_STEP_ID_ALPHABET) for _ in range(STEP_ID_LENGTH))


@dataclass
class ExpansionResult:
    root_id: str
    is_epic: bool
    item_ids: list[str] = field(default_factory=list)
    step_items: dict[str, str] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)


@dataclass
class RenderedItem:
    title: str
    description: str
    template_changed: bool = False
    template_missing: bool = False


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


def bind_variables(template: Template, supplied: dict[str, str] | None) -> dict[str, str]:
    """Resolve every declared variable; reject undeclared ones."""
    supplied = dict(supplied or {})
    bound: dict[str, str] = {}
    for name in sorted(template.variables):
        value = template.variables[name].resolve(supplied)
        if value is None:
            raise ValidationError(f"missing required template variable: {name}")
        bound[name] = value
    for name in sorted(supplied):
        if name not in template.variables:
            raise ValidationError(f"unknown template variable: {name}")
    return bound


def assign_step_ids(steps: tuple[Step, ...] | list[Step], generate: Callable[[], str] = random_step_id) -> list[str]:
    """Explicit ids must be unique; unlabeled steps get a fresh random id."""
    ids: list[str] = []
    taken: set[str] = set()
    for step in steps:
        if step.id:
            if step.id in taken:
                raise ValidationError(f"duplicate step id: {step.id}")
            taken.add(step.id)
    for step in steps:
        if step.id:
            ids.append(step.id)
            continue
        new_id = generate()
        while new_id in taken:
            new_id = generate()
        taken.add(new_id)
        ids.append(new_id)
    return ids


def validate_step_deps(steps: tuple[Step, ...] | list[Step], step_ids: list[str]) -> None:
    known = set(step_ids)
    for i, step in enumerate(steps):
        for dep in step.depends:
            if dep not in known:
                raise ValidationError(f"step {i} depends on unknown step id: {dep}")
            if dep == step_ids[i]:
                raise ValidationError(f"step {i} depends on itself: {dep}")


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------


@guarded
def instantiate_template(
    conn: sqlite3.Connection,
    template: Template | str,
    title: str,
    variables: dict[str, str] | None = None,
    *,
    project: str | None = None,
    priority: int = DEFAULT_PRIORITY,
    actor: AgentContext | None = None,
    config: Config | None = None,
    dirs: list[Path] | None = None,
) -> ExpansionResult:
    """Create items from a template.

    Zero steps gives one plain task, one step gives one task rendered from
    that step, two or more give an epic with one child task per step and
    child edges mirroring the step dependencies.
    """
    if isinstance(template, str):
        template = load_template(template, dirs)
    title = sanitize_title(title or "")
    if not title:
        raise ValidationError("title is required for template instantiation")
    bound = bind_variables(template, variables)
    step_ids = assign_step_ids(template.steps)
    validate_step_deps(template.steps, step_ids)

    binding = {"template_id": template.id, "variables": bound, "template_hash": template.hash}
    common = {"project": project, "priority": priority, "actor": actor, "config": config}

    with transaction(conn):
        if not template.steps:
            item = create_item(
                conn, title, item_type=TYPE_TASK,
                description=render_text(template.description, bound),
                **common, **binding,
            )
            return ExpansionResult(item.id, False, [item.id], {}, bound)

        if len(template.steps) == 1:
            step = template.steps[0]
            step_title = render_title(step.title, bound) or title
            item = create_item(
                conn, step_title, item_type=TYPE_TASK,
                description=render_text(step.description, bound),
                **common, **binding,
            )
            return ExpansionResult(item.id, False, [item.id], {step_ids[0]: item.id}, bound)

        epic = create_item(
            conn, title, item_type=TYPE_EPIC,
            description=render_text(template.description, bound),
            **common, **binding,
        )
        created = [epic.id]
        step_items: dict[str, str] = {}
        for index, step in enumerate(template.steps):
            child = create_item(
                conn, render_title(step.title, bound) or f"{title} (step {index + 1})",
                item_type=TYPE_TASK,
                description=render_text(step.description, bound),
                parent_id=epic.id, step_index=index, **common, **binding,
            )
            created.append(child.id)
            step_items[step_ids[index]] = child.id
        for index, step in enumerate(template.steps):
            for dep in step.depends:
                add_edge(conn, step_items[step_ids[index]], step_items[dep], actor)
        log.debug("instantiate_template: %s -> %s with %s children", template.id, epic.id, len(created) - 1)
        return ExpansionResult(epic.id, True, created, step_items, bound)


# ---------------------------------------------------------------------------
# Display re-render and drift detection
# ---------------------------------------------------------------------------


def render_item(item: Item, template: Template | None = None, dirs: list[Path] | None = None) -> RenderedItem:
    """Re-render a template-built item for display.

    ``template_changed`` is set when the template's current hash differs from
    the one recorded at instantiation. Nothing is re-expanded.
    """
    if not item.template_id:
        return RenderedItem(item.title, item.description)
    if template is None:
        try:
            template = load_template(item.template_id, dirs)
        except (NotFoundError, ValidationError) as exc:
            log.warning("render_item: %s: template %s unavailable: %s", item.id, item.template_id, exc)
            return RenderedItem(item.title, item.description, template_missing=True)

    changed = template.hash != item.template_hash
    variables = {**(item.variables or {}), "item_id": item.id}
    if item.step_index is None and len(template.steps) == 1:
        step = template.steps[0]
        title = render_title(step.title, variables) or item.title
        return RenderedItem(title, render_text(step.description, variables), changed)
    if item.step_index is None:
        return RenderedItem(item.title, render_text(template.description, variables), changed)
    if item.step_index >= len(template.steps):
        return RenderedItem(item.title, item.description, changed)
    step = template.steps[item.step_index]
    title = render_title(step.title, variables) or item.title
    return RenderedItem(title, render_text(step.description, variables), changed)
