"""CLI interface for phasegraph."""

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from phasegraph.config import (
    ROOT_DIR_NAME,
    Config,
    ConfigError,
    configure_logging,
    find_root,
    load_config,
    save_config,
)
from phasegraph.errors import EdgeError, InvalidProjectKeyError, NotFoundError
from phasegraph.models import EpicStatus, NodeKind, TaskStatus, WorkItem, validate_project_key
from phasegraph.service import GraphService, WorkItemService
from phasegraph.storage import EdgeStorage, WorkItemStorage

console = Console()

KIND_CHOICE = click.Choice([kind.value for kind in NodeKind])
STATUS_CHOICE = click.Choice(sorted({s.value for s in EpicStatus} | {s.value for s in TaskStatus}))


def build_service(root: Path) -> WorkItemService:
    """Wire storage and services for a phasegraph root."""
    graph = GraphService(EdgeStorage(root))
    return WorkItemService(WorkItemStorage(root), graph)


def get_service(ctx: click.Context) -> WorkItemService:
    """Get service from context."""
    return ctx.obj["service"]


def get_project(ctx: click.Context) -> str:
    """Project from -p/--project, falling back to the configured default."""
    project = ctx.obj.get("project") or ctx.obj["config"].default_project
    if not project:
        raise click.ClickException("No project given. Use -p PROJECT or set default_project.")
    try:
        return validate_project_key(project)
    except InvalidProjectKeyError as e:
        raise click.ClickException(str(e))


@click.group(invoke_without_command=True)
@click.option("-p", "--project", help="Project key (default: configured default_project)")
@click.pass_context
def cli(ctx: click.Context, project: str | None) -> None:
    """phasegraph - dependency phases for epics and tasks."""
    ctx.ensure_object(dict)
    root = find_root()
    if root is None and ctx.invoked_subcommand not in ("init", None):
        raise click.ClickException("Not in a phasegraph project. Run 'phasegraph init' first.")

    config = Config()
    if root is not None:
        try:
            config = load_config(root)
        except ConfigError as e:
            raise click.ClickException(str(e))
    configure_logging(config.log_level)

    ctx.obj["config"] = config
    ctx.obj["project"] = project
    ctx.obj["service"] = build_service(root) if root else None

    if ctx.invoked_subcommand is None:
        console.print(README_TEXT)


README_TEXT = """
[bold cyan]phasegraph[/bold cyan] - dependency phases for epics and tasks

[bold]Quick Reference[/bold]
  phasegraph init --project KEY             Initialize with a default project
  phasegraph create KIND "Title" [options]  Create an epic or a task
  phasegraph list KIND                      List items
  phasegraph show KIND REF                  Show item details
  phasegraph ready KIND                     Items whose dependencies are done
  phasegraph phases KIND                    Items grouped into phases
  phasegraph check KIND                     Report dependency cycles in stored data

[bold]Dependencies[/bold]
  phasegraph dep add KIND ITEM DEPENDENCY   ITEM depends on DEPENDENCY
  phasegraph dep rm KIND ITEM DEPENDENCY    Remove dependency
  phasegraph dep list KIND ITEM [--all]     Dependencies and dependents

KIND is 'epic' or 'task'. REF is an item ID (tk-a3f8) or display key
(CORE-3 for a task, CORE-E3 for an epic).
An item's phase is 1 when it has no dependencies, otherwise one more than
its highest dependency.
""".strip()


@cli.command()
@click.option("--project", "default_project", help="Default project key")
def init(default_project: str | None) -> None:
    """Initialize a new phasegraph project."""
    root = Path.cwd() / ROOT_DIR_NAME
    if root.exists():
        console.print("[yellow]phasegraph already initialized[/yellow]")
        return
    if default_project is not None:
        try:
            validate_project_key(default_project)
        except InvalidProjectKeyError as e:
            raise click.ClickException(str(e))
    EdgeStorage(root).ensure_initialized()
    WorkItemStorage(root).ensure_initialized()
    save_config(root, Config(default_project=default_project))
    console.print(f"Initialized phasegraph in {root}")


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("title")
@click.option("-d", "--description", default="", help="Item description")
@click.option(
    "-f",
    "--file",
    "file_path",
    type=click.Path(exists=False),
    help="Read description from file (use '-' for stdin)",
)
@click.option(
    "--depends-on", "depends_on", multiple=True, help="Depend on ID or key (repeatable)"
)
@click.pass_context
def create(
    ctx: click.Context,
    kind: str,
    title: str,
    description: str,
    file_path: str | None,
    depends_on: tuple[str, ...],
) -> None:
    """Create a new epic or task."""
    service = get_service(ctx)
    project = get_project(ctx)

    if file_path:
        if file_path == "-":
            description = sys.stdin.read()
        else:
            path = Path(file_path)
            if not path.exists():
                raise click.ClickException(f"File not found: {file_path}")
            description = path.read_text()

    try:
        item = service.create_item(
            project,
            NodeKind(kind),
            title,
            description=description,
            depends_on=list(depends_on),
        )
    except (EdgeError, NotFoundError) as e:
        raise click.ClickException(str(e))
    console.print(f"Created [cyan]{item.display_key}[/cyan] ({item.id}): {item.title}")


@cli.command("list")
@click.argument("kind", type=KIND_CHOICE)
@click.option("-s", "--status", type=STATUS_CHOICE, help="Filter by status")
@click.pass_context
def list_items(ctx: click.Context, kind: str, status: str | None) -> None:
    """List epics or tasks."""
    service = get_service(ctx)
    try:
        items = service.list_items(get_project(ctx), NodeKind(kind), status=status)
    except ValueError as e:
        raise click.ClickException(str(e))
    if not items:
        console.print(f"No {NodeKind(kind).plural} found.")
        return
    _print_item_table(items)


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.pass_context
def show(ctx: click.Context, kind: str, ref: str) -> None:
    """Show item details."""
    service = get_service(ctx)
    project = get_project(ctx)
    node_kind = NodeKind(kind)
    try:
        item = service.resolve_item(project, node_kind, ref)
        dependencies = service.list_dependencies(project, node_kind, item.id)
        dependents = service.list_dependents(project, node_kind, item.id)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    _, result = service.compute_phases(project, node_kind)

    console.print(f"[bold cyan]{item.display_key}[/bold cyan] ({item.id}): {item.title}")
    console.print(f"Status: {item.status.value}  Phase: {result.phases.get(item.id, 1)}")
    if dependencies:
        console.print(f"Depends on: {', '.join(d.display_key for d in dependencies)}")
    if dependents:
        console.print(f"Required by: {', '.join(d.display_key for d in dependents)}")
    if item.id in result.cyclic_nodes:
        console.print("[yellow]This item is part of a dependency cycle[/yellow]")
    if item.description:
        console.print(f"\n{item.description}")


@cli.command("status")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.argument("status", type=STATUS_CHOICE)
@click.pass_context
def set_status(ctx: click.Context, kind: str, ref: str, status: str) -> None:
    """Set the status of an item."""
    service = get_service(ctx)
    try:
        item = service.set_status(get_project(ctx), NodeKind(kind), ref, status)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    except ValueError:
        raise click.ClickException(f"'{status}' is not a valid {kind} status")
    console.print(f"[cyan]{item.display_key}[/cyan] is now {item.status.value}")


@cli.command("rm")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.pass_context
def remove(ctx: click.Context, kind: str, ref: str) -> None:
    """Delete an item and its dependencies."""
    service = get_service(ctx)
    try:
        item = service.delete_item(get_project(ctx), NodeKind(kind), ref)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    console.print(f"Deleted [cyan]{item.display_key}[/cyan]: {item.title}")


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.pass_context
def ready(ctx: click.Context, kind: str) -> None:
    """List open items whose dependencies are all done."""
    service = get_service(ctx)
    items = service.ready_items(get_project(ctx), NodeKind(kind))
    if not items:
        console.print("No ready items found.")
        return
    _print_item_table(items)


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.pass_context
def phases(ctx: click.Context, kind: str) -> None:
    """Show items grouped into dependency phases."""
    service = get_service(ctx)
    node_kind = NodeKind(kind)
    waves = service.phase_waves(get_project(ctx), node_kind)
    if not waves:
        console.print(f"No {node_kind.plural} found.")
        return

    table = Table()
    table.add_column("Phase", justify="center")
    table.add_column("Key", style="cyan")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Depends on")

    cyclic = []
    for wave in waves:
        for view in wave:
            table.add_row(
                str(view["phase"]),
                view["displayKey"],
                view["status"],
                view["title"][:50],
                ", ".join(view["dependsOn"]),
            )
            if view["inCycle"]:
                cyclic.append(view["displayKey"])
        table.add_section()
    console.print(table)

    if cyclic:
        console.print(
            f"[yellow]Warning:[/yellow] dependency cycle among {', '.join(cyclic)}; "
            "these items are shown in phase 1"
        )


@cli.command()
@click.argument("kind", type=KIND_CHOICE)
@click.pass_context
def check(ctx: click.Context, kind: str) -> None:
    """Report dependency cycles already present in stored data."""
    service = get_service(ctx)
    project = get_project(ctx)
    node_kind = NodeKind(kind)
    cyclic = service.graph.find_cycles(project, node_kind)
    if not cyclic:
        console.print("No dependency cycles found.")
        return
    keys = {item.id: item.display_key for item in service.list_items(project, node_kind)}
    labels = sorted(keys.get(node_id, node_id) for node_id in cyclic)
    console.print(f"[red]Dependency cycle among:[/red] {', '.join(labels)}")
    ctx.exit(1)


@cli.group()
def dep() -> None:
    """Manage dependencies."""
    pass


@dep.command("add")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.argument("depends_on_ref")
@click.pass_context
def dep_add(ctx: click.Context, kind: str, ref: str, depends_on_ref: str) -> None:
    """Make REF depend on DEPENDS_ON_REF."""
    service = get_service(ctx)
    try:
        service.add_dependency(get_project(ctx), NodeKind(kind), ref, depends_on_ref)
    except (EdgeError, NotFoundError) as e:
        raise click.ClickException(str(e))
    console.print(f"[cyan]{ref}[/cyan] now depends on [cyan]{depends_on_ref}[/cyan]")


@dep.command("rm")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.argument("depends_on_ref")
@click.pass_context
def dep_rm(ctx: click.Context, kind: str, ref: str, depends_on_ref: str) -> None:
    """Remove dependency: REF no longer depends on DEPENDS_ON_REF."""
    service = get_service(ctx)
    try:
        service.remove_dependency(get_project(ctx), NodeKind(kind), ref, depends_on_ref)
    except NotFoundError as e:
        raise click.ClickException(str(e))
    console.print(f"[cyan]{ref}[/cyan] no longer depends on [cyan]{depends_on_ref}[/cyan]")


@dep.command("list")
@click.argument("kind", type=KIND_CHOICE)
@click.argument("ref")
@click.option("--all", "show_all", is_flag=True, help="Also list indirect dependencies")
@click.pass_context
def dep_list(ctx: click.Context, kind: str, ref: str, show_all: bool) -> None:
    """List what REF depends on and what depends on REF."""
    service = get_service(ctx)
    project = get_project(ctx)
    node_kind = NodeKind(kind)
    try:
        dependencies = service.list_dependencies(project, node_kind, ref)
        dependents = service.list_dependents(project, node_kind, ref)
        transitive = (
            service.list_transitive_dependencies(project, node_kind, ref) if show_all else []
        )
    except NotFoundError as e:
        raise click.ClickException(str(e))

    console.print("[bold]Depends on[/bold]")
    for item in dependencies:
        console.print(f"  {item.display_key}: {item.title}")
    if not dependencies:
        console.print("  (none)")
    console.print("[bold]Required by[/bold]")
    for item in dependents:
        console.print(f"  {item.display_key}: {item.title}")
    if not dependents:
        console.print("  (none)")
    if show_all:
        console.print("[bold]All dependencies[/bold] (deepest first)")
        for item in transitive:
            console.print(f"  {item.display_key}: {item.title}")
        if not transitive:
            console.print("  (none)")


def _print_item_table(items: list[WorkItem]) -> None:
    """Print items as a formatted table."""
    table = Table()
    table.add_column("Key", style="cyan")
    table.add_column("ID")
    table.add_column("Status")
    table.add_column("Title")

    for item in items:
        table.add_row(item.display_key, item.id, item.status.value, item.title[:50])
    console.print(table)


if __name__ == "__main__":
    cli()
