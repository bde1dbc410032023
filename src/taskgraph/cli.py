"""Click CLI entrypoint: `taskgraph <subcommand>`.

Every call is stateless: open the store, run one library call, print the
result. JSON output by default, --human for key/value text.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable

import click

from taskgraph.agent import AgentContext, cleanup_agent_sessions, record_agent_project_access
from taskgraph.config import load_config
from taskgraph.db import ago_iso, get_db, init_db
from taskgraph.defaults import resolve_project
from taskgraph.errors import ConflictError, TaskGraphError
from taskgraph.output import output


def _fail(exc: TaskGraphError) -> dict[str, object]:
    data: dict[str, object] = {"error": str(exc)}
    if isinstance(exc, ConflictError) and exc.owner:
        data["owner"] = exc.owner
    return data


def _run(ctx: click.Context, func: Callable[[sqlite3.Connection], dict[str, object]]) -> None:
    """Open the store, run one operation, print its result or its error."""
    try:
        conn = get_db()
    except TaskGraphError as exc:
        output(_fail(exc), ctx.obj["human"])
        return
    try:
        result = func(conn)
    except TaskGraphError as exc:
        result = _fail(exc)
    finally:
        conn.close()
    output(result, ctx.obj["human"])


def _parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--var")
        key, value = pair.split("=", 1)
        key = key.strip()
        if not key:
            raise click.BadParameter(f"empty variable name in {pair!r}", param_hint="--var")
        variables[key] = value
    return variables


@click.group()
@click.version_option(package_name="taskgraph")
@click.option("--human", is_flag=True, help="Human-readable output instead of JSON")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.option("--project", "-p", default=None, help="Project name (default: $TASKGRAPH_PROJECT or config)")
@click.pass_context
def cli(ctx: click.Context, human: bool, verbose: bool, project: str | None) -> None:
    """taskgraph: dependency-aware task tracking for agents."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    ctx.obj["human"] = human
    try:
        config = load_config()
        init_db()
    except TaskGraphError as exc:
        output(_fail(exc), human)
        return
    ctx.obj["config"] = config
    ctx.obj["project"] = resolve_project(project, config.default_project)
    ctx.obj["actor"] = AgentContext.from_env()


# =========================================================================
# Items
# =========================================================================


@cli.command()
@click.argument("title")
@click.option("--type", "item_type", type=click.Choice(["task", "epic"]), default="task")
@click.option("--priority", type=click.IntRange(1, 3), default=2, help="1 high, 2 medium, 3 low")
@click.option("--description", "-d", default="")
@click.option("--parent", "parent_id", default=None)
@click.option("--after", "after", multiple=True, help="Item id this one depends on (repeatable)")
@click.option("--label", "labels", multiple=True, help="Label to attach (repeatable)")
@click.option("--template", "template_id", default=None, help="Expand a template instead of creating one item")
@click.option("--var", "var_pairs", multiple=True, help="Template variable as key=value (repeatable)")
@click.pass_context
def add(
    ctx: click.Context, title: str, item_type: str, priority: int, description: str, parent_id: str | None,
    after: tuple[str, ...], labels: tuple[str, ...], template_id: str | None, var_pairs: tuple[str, ...],
) -> None:
    """Create an item, or expand a template with --template."""
    from taskgraph.db import transaction
    from taskgraph.graph.deps import add_edge
    from taskgraph.items.create_item import create_item
    from taskgraph.labels import add_label
    from taskgraph.templates.expand import instantiate_template

    variables = _parse_vars(var_pairs)
    if variables and not template_id:
        raise click.UsageError("--var only applies with --template")

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        actor = ctx.obj["actor"]
        with transaction(conn):
            if template_id:
                result = instantiate_template(
                    conn, template_id, title, variables, project=ctx.obj["project"],
                    priority=priority, actor=actor, config=ctx.obj["config"],
                )
                root_id = result.root_id
                payload: dict[str, object] = {"created": result.item_ids, "root": root_id, "epic": result.is_epic}
            else:
                item = create_item(
                    conn, title, project=ctx.obj["project"], item_type=item_type, description=description,
                    priority=priority, parent_id=parent_id, actor=actor, config=ctx.obj["config"],
                )
                root_id = item.id
                payload = {"created": [item.id], "item": item}
            for dep in after:
                add_edge(conn, root_id, dep, actor)
            for name in labels:
                add_label(conn, root_id, name)
        if actor.agent_id:
            record_agent_project_access(conn, actor.agent_id, ctx.obj["project"])
        return payload

    _run(ctx, op)


@cli.command()
@click.argument("item_id")
@click.pass_context
def show(ctx: click.Context, item_id: str) -> None:
    """Show an item with its dependencies, dependents, logs and labels."""
    from taskgraph.graph.deps import all_dep_statuses, blocked_by
    from taskgraph.items import get_item, get_logs
    from taskgraph.labels import item_labels
    from taskgraph.templates.expand import render_item

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        item = get_item(conn, item_id)
        data: dict[str, object] = {
            "item": item,
            "depends_on": all_dep_statuses(conn, item.id),
            "blocks": blocked_by(conn, item.id),
            "labels": [label.name for label in item_labels(conn, item.id)],
            "logs": get_logs(conn, item.id),
        }
        if item.template_id:
            rendered = render_item(item)
            data["rendered"] = rendered
            if rendered.template_changed:
                data["warning"] = "template changed since instantiation"
        return data

    _run(ctx, op)


@cli.command("list")
@click.option("--status", default=None)
@click.option("--type", "item_type", default=None)
@click.option("--parent", "parent_id", default=None)
@click.option("--label", "labels", multiple=True)
@click.option("--blocking", default=None, help="Items the given id depends on")
@click.option("--blocked-by", "blocked_by_id", default=None, help="Items depending on the given id")
@click.option("--has-blockers", is_flag=True)
@click.option("--no-blockers", is_flag=True)
@click.option("--all-projects", is_flag=True)
@click.pass_context
def list_cmd(
    ctx: click.Context, status: str | None, item_type: str | None, parent_id: str | None, labels: tuple[str, ...],
    blocking: str | None, blocked_by_id: str | None, has_blockers: bool, no_blockers: bool, all_projects: bool,
) -> None:
    """List items."""
    from taskgraph.items import list_items

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        items = list_items(
            conn, project=None if all_projects else ctx.obj["project"], status=status, parent_id=parent_id,
            item_type=item_type, labels=list(labels), blocking=blocking, blocked_by=blocked_by_id,
            has_blockers=has_blockers, no_blockers=no_blockers,
        )
        return {"items": items, "count": len(items)}

    _run(ctx, op)


@cli.command()
@click.option("--label", "labels", multiple=True)
@click.pass_context
def ready(ctx: click.Context, labels: tuple[str, ...]) -> None:
    """Open items whose dependencies are all done."""
    from taskgraph.graph.ready import ready_items

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        items = ready_items(conn, ctx.obj["project"], list(labels))
        return {"ready": items, "count": len(items)}

    _run(ctx, op)


@cli.command()
@click.argument("item_id")
@click.option("--resume", is_flag=True, help="Take over an item already in progress")
@click.pass_context
def start(ctx: click.Context, item_id: str, resume: bool) -> None:
    """Start work on an item."""
    from taskgraph.items import start_item

    _run(ctx, lambda conn: {"item": start_item(conn, item_id, ctx.obj["actor"], resume=resume)})


@cli.command()
@click.argument("item_id")
@click.argument("results")
@click.option("--override", is_flag=True, help="Complete despite unmet dependencies or open children")
@click.pass_context
def done(ctx: click.Context, item_id: str, results: str, override: bool) -> None:
    """Complete an item with a results summary."""
    from taskgraph.items import complete_item

    _run(ctx, lambda conn: {"item": complete_item(conn, item_id, results, ctx.obj["actor"], override=override)})


@cli.command()
@click.argument("item_id")
@click.argument("reason")
@click.pass_context
def block(ctx: click.Context, item_id: str, reason: str) -> None:
    """Mark an item blocked."""
    from taskgraph.items import block_item

    _run(ctx, lambda conn: {"item": block_item(conn, item_id, reason, ctx.obj["actor"])})


@cli.command()
@click.argument("item_id")
@click.argument("reason", required=False, default="")
@click.pass_context
def cancel(ctx: click.Context, item_id: str, reason: str) -> None:
    """Cancel an item."""
    from taskgraph.items import cancel_item

    _run(ctx, lambda conn: {"item": cancel_item(conn, item_id, reason, ctx.obj["actor"])})


@cli.command()
@click.argument("item_id")
@click.pass_context
def reopen(ctx: click.Context, item_id: str) -> None:
    """Reopen a done or canceled item."""
    from taskgraph.items import reopen_item

    _run(ctx, lambda conn: {"item": reopen_item(conn, item_id, ctx.obj["actor"])})


@cli.command()
@click.argument("item_id")
@click.pass_context
def release(ctx: click.Context, item_id: str) -> None:
    """Drop the claim on an in-progress or blocked item and return it to open."""
    from taskgraph.items import release_item

    _run(ctx, lambda conn: {"item": release_item(conn, item_id, ctx.obj["actor"])})


@cli.command("set-status")
@click.argument("item_id")
@click.argument("status")
@click.option("--force", is_flag=True, help="Write the status directly, bypassing the state machine")
@click.option("--reason", default="")
@click.pass_context
def set_status_cmd(ctx: click.Context, item_id: str, status: str, force: bool, reason: str) -> None:
    """Change an item's status."""
    from taskgraph.items import set_status

    _run(ctx, lambda conn: {"item": set_status(conn, item_id, status, ctx.obj["actor"], force=force, reason=reason)})


@cli.command("log")
@click.argument("item_id")
@click.argument("message")
@click.pass_context
def log_cmd(ctx: click.Context, item_id: str, message: str) -> None:
    """Append a progress log to an item."""
    from taskgraph.items import add_log

    _run(ctx, lambda conn: {"log": add_log(conn, item_id, message, ctx.obj["actor"])})


@cli.command()
@click.argument("item_id")
@click.pass_context
def delete(ctx: click.Context, item_id: str) -> None:
    """Delete an item with its edges, logs and label links."""
    from taskgraph.items import delete_item

    _run(ctx, lambda conn: delete_item(conn, item_id, ctx.obj["actor"]))


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.pass_context
def merge(ctx: click.Context, source_id: str, target_id: str) -> None:
    """Fold SOURCE_ID into TARGET_ID and delete the source."""
    from taskgraph.items import merge_items

    _run(ctx, lambda conn: merge_items(conn, source_id, target_id, ctx.obj["actor"]))


# =========================================================================
# Dependencies
# =========================================================================


@cli.group()
def dep() -> None:
    """Manage dependency edges."""


@dep.command("add")
@click.argument("item_id")
@click.argument("depends_on")
@click.pass_context
def dep_add(ctx: click.Context, item_id: str, depends_on: str) -> None:
    """ITEM_ID depends on DEPENDS_ON."""
    from taskgraph.graph.deps import add_edge

    _run(ctx, lambda conn: {"added": add_edge(conn, item_id, depends_on, ctx.obj["actor"]),
                            "item_id": item_id, "depends_on": depends_on})


@dep.command("rm")
@click.argument("item_id")
@click.argument("depends_on")
@click.pass_context
def dep_rm(ctx: click.Context, item_id: str, depends_on: str) -> None:
    """Remove an edge."""
    from taskgraph.graph.deps import remove_edge

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        remove_edge(conn, item_id, depends_on, ctx.obj["actor"])
        return {"removed": True, "item_id": item_id, "depends_on": depends_on}

    _run(ctx, op)


@dep.command("list")
@click.argument("item_id")
@click.pass_context
def dep_list(ctx: click.Context, item_id: str) -> None:
    """Dependencies with their status, including those inherited from ancestor epics."""
    from taskgraph.graph.deps import all_dep_statuses, has_unmet_deps

    _run(ctx, lambda conn: {"depends_on": all_dep_statuses(conn, item_id), "unmet": has_unmet_deps(conn, item_id)})


@cli.command()
@click.option("--cycles", "show_cycles", is_flag=True, help="Also report dependency cycles")
@click.option("--fix-parent-child", is_flag=True, help="Remove edges between an item and its own parent or child")
@click.pass_context
def graph(ctx: click.Context, show_cycles: bool, fix_parent_child: bool) -> None:
    """Every dependency edge in the project."""
    from taskgraph.graph import all_edges, find_cycles, find_parent_child_cycles, fix_parent_child_cycles

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        project = ctx.obj["project"]
        data: dict[str, object] = {}
        if fix_parent_child:
            data["removed"] = fix_parent_child_cycles(conn, project, ctx.obj["actor"])
        data["edges"] = all_edges(conn, project)
        if show_cycles:
            data["cycles"] = find_cycles(conn, project)
            data["parent_child"] = find_parent_child_cycles(conn, project)
        return data

    _run(ctx, op)


@cli.command("impact")
@click.argument("item_id")
@click.pass_context
def impact_cmd(ctx: click.Context, item_id: str) -> None:
    """Open items that become ready once ITEM_ID is done."""
    from taskgraph.graph.deps import impact

    _run(ctx, lambda conn: {"impact": [
        {"id": item.id, "title": item.title, "priority": item.priority, "depth": depth}
        for item, depth in impact(conn, item_id)
    ]})


# =========================================================================
# Agents, status, history
# =========================================================================


@cli.command()
@click.option("--minutes", type=int, default=None, help="Inactivity threshold (default from config)")
@click.pass_context
def stale(ctx: click.Context, minutes: int | None) -> None:
    """In-progress items with no recent activity."""
    from taskgraph.agent import stale_items

    threshold = minutes if minutes is not None else ctx.obj["config"].stale_minutes
    _run(ctx, lambda conn: {"stale": stale_items(conn, ago_iso(minutes=threshold), ctx.obj["project"]),
                            "minutes": threshold})


@cli.command()
@click.option("--label", "labels", multiple=True)
@click.pass_context
def status(ctx: click.Context, labels: tuple[str, ...]) -> None:
    """Project status report."""
    from taskgraph.projects import project_status

    actor = ctx.obj["actor"]
    _run(ctx, lambda conn: {"status": project_status(
        conn, ctx.obj["project"], list(labels), actor.agent_id, ctx.obj["config"])})


@cli.command()
@click.pass_context
def projects(ctx: click.Context) -> None:
    """Known projects."""
    from taskgraph.projects import list_projects

    _run(ctx, lambda conn: {"projects": list_projects(conn)})


@cli.command()
@click.option("--item", "item_id", default=None)
@click.option("--actor", "actor_id", default=None)
@click.option("--event", "events", multiple=True)
@click.option("--since", default=None, help="ISO timestamp lower bound")
@click.option("--limit", type=int, default=50)
@click.option("--all-projects", is_flag=True)
@click.pass_context
def history(
    ctx: click.Context, item_id: str | None, actor_id: str | None, events: tuple[str, ...],
    since: str | None, limit: int, all_projects: bool,
) -> None:
    """Audit history, newest first."""
    from taskgraph.history import query_history

    project = None if all_projects or item_id else ctx.obj["project"]
    _run(ctx, lambda conn: {"history": query_history(
        conn, item_id=item_id, project=project, actor_id=actor_id, event_types=list(events),
        since=since, limit=limit)})


@cli.command("history-clean")
@click.option("--dry-run", is_flag=True)
@click.pass_context
def history_clean(ctx: click.Context, dry_run: bool) -> None:
    """Drop history outside the retention window; also trims agent sessions."""
    from taskgraph.history import cleanup_history

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        result = cleanup_history(conn, ctx.obj["config"], dry_run=dry_run)
        data: dict[str, object] = {"cleanup": result}
        if not dry_run:
            data["sessions_removed"] = cleanup_agent_sessions(conn)
        return data

    _run(ctx, op)


# =========================================================================
# Backups
# =========================================================================


@cli.command("backup")
@click.pass_context
def backup_cmd(ctx: click.Context) -> None:
    """Snapshot the store."""
    from taskgraph.backup import backup

    _run(ctx, lambda conn: {"backup": backup(conn, config=ctx.obj["config"])})


@cli.command()
@click.pass_context
def backups(ctx: click.Context) -> None:
    """List snapshots, newest first."""
    from taskgraph.backup import list_backups

    _run(ctx, lambda conn: {"backups": list_backups()})


@cli.command("restore")
@click.argument("backup_path")
@click.pass_context
def restore_cmd(ctx: click.Context, backup_path: str) -> None:
    """Replace the store with a snapshot."""
    from taskgraph.backup import restore

    try:
        data: dict[str, object] = {"restored": restore(backup_path), "from": backup_path}
    except TaskGraphError as exc:
        data = _fail(exc)
    output(data, ctx.obj["human"])


# =========================================================================
# Templates
# =========================================================================


@cli.command()
@click.argument("template_id", required=False)
@click.pass_context
def templates(ctx: click.Context, template_id: str | None) -> None:
    """List templates, or show one."""
    from taskgraph.templates import list_templates, load_template

    def summary(t) -> dict[str, object]:
        return {
            "id": t.id,
            "title": t.title,
            "source": t.source,
            "path": t.path,
            "steps": len(t.steps),
            "variables": {name: v.kind.value for name, v in t.variables.items()},
            "hash": t.hash,
        }

    try:
        if template_id:
            data: dict[str, object] = {"template": summary(load_template(template_id))}
        else:
            data = {"templates": [summary(t) for t in list_templates()]}
    except TaskGraphError as exc:
        data = _fail(exc)
    output(data, ctx.obj["human"])


# =========================================================================
# Labels
# =========================================================================


@cli.group()
def label() -> None:
    """Manage labels."""


@label.command("add")
@click.argument("item_id")
@click.argument("name")
@click.pass_context
def label_add(ctx: click.Context, item_id: str, name: str) -> None:
    """Attach a label to an item."""
    from taskgraph.labels import add_label

    _run(ctx, lambda conn: {"added": add_label(conn, item_id, name), "item_id": item_id, "label": name})


@label.command("rm")
@click.argument("item_id")
@click.argument("name")
@click.pass_context
def label_rm(ctx: click.Context, item_id: str, name: str) -> None:
    """Detach a label from an item."""
    from taskgraph.labels import remove_label

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        remove_label(conn, item_id, name)
        return {"removed": True, "item_id": item_id, "label": name}

    _run(ctx, op)


@label.command("list")
@click.pass_context
def label_list(ctx: click.Context) -> None:
    """Labels in the project."""
    from taskgraph.labels import list_labels

    _run(ctx, lambda conn: {"labels": list_labels(conn, ctx.obj["project"])})


# =========================================================================
# Learnings
# =========================================================================


@cli.command()
@click.argument("summary")
@click.option("--detail", default="")
@click.option("--concept", "concepts", multiple=True)
@click.option("--file", "files", multiple=True)
@click.option("--task", "task_id", default=None)
@click.pass_context
def learn(
    ctx: click.Context, summary: str, detail: str, concepts: tuple[str, ...], files: tuple[str, ...],
    task_id: str | None,
) -> None:
    """Record a learning."""
    from taskgraph.learnings import create_learning

    _run(ctx, lambda conn: {"learning": create_learning(
        conn, ctx.obj["project"], summary, detail, list(concepts), list(files), task_id)})


@cli.command()
@click.option("--search", "text", default=None)
@click.option("--concept", "concepts", multiple=True)
@click.option("--include-stale", is_flag=True)
@click.pass_context
def learnings(ctx: click.Context, text: str | None, concepts: tuple[str, ...], include_stale: bool) -> None:
    """Search learnings by text or concept; with neither, list concepts."""
    from taskgraph.learnings import learnings_by_concepts, list_concepts, search_learnings

    def op(conn: sqlite3.Connection) -> dict[str, object]:
        project = ctx.obj["project"]
        if concepts:
            return {"learnings": learnings_by_concepts(conn, project, list(concepts), include_stale)}
        if text:
            return {"learnings": search_learnings(conn, project, text, include_stale)}
        return {"concepts": list_concepts(conn, project)}

    _run(ctx, op)


if __name__ == "__main__":
    cli()
