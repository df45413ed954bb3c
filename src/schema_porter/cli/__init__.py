"""CLI module for schema export, conflict review and import.

Usage:
    PORTER_PROFILE=staging schema-porter connect
    schema-porter status
    schema-porter profiles
    schema-porter graph --root blog_post
    schema-porter export --root blog_post --with-dependencies -o blog.json
    schema-porter conflicts blog.json
    schema-porter import blog.json --item-types rename --plugins reuse --dry-run
    schema-porter import blog.json --item-types rename --plugins reuse --confirm

Commands:
    connect    - Check a profile against its project and remember it
    status     - Show current connection status
    profiles   - List available profiles
    graph      - Show the dependency graph of an item type
    export     - Write an export document
    conflicts  - Compare an export document with the current project
    import     - Import an export document into the current project
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress as ProgressBar, TextColumn
from rich.table import Table

from schema_porter.adapters.cma import AsyncCmaAdapter
from schema_porter.config.loader import load_porter_config
from schema_porter.config.models import ImportSettings
from schema_porter.errors import ProfileNotFoundError, SchemaPorterError
from schema_porter.factory import (
    connect_and_validate,
    get_active_profile_name,
    get_client,
    read_profile_lock,
)
from schema_porter.graph.analysis import (
    count_cycles,
    find_outbound_edges,
    get_connected_components,
)
from schema_porter.graph.builder import build_graph, build_graph_from_export
from schema_porter.graph.dependencies import expand_selection_with_dependencies
from schema_porter.graph.models import Graph, item_type_node_id
from schema_porter.migration.conflicts import ConflictMap, detect_conflicts
from schema_porter.migration.executor import ImportConcurrency, ImportResult, import_schema
from schema_porter.migration.export_doc import build_export_doc, build_full_export_doc
from schema_porter.migration.import_doc import ImportDoc, build_import_doc
from schema_porter.migration.recipe import fetch_recipe
from schema_porter.migration.resolutions import (
    MassDefaults,
    ReuseExisting,
    build_resolutions,
    validate_resolutions,
)
from schema_porter.schema.document import dump_export_document, load_export_document
from schema_porter.schema.export_schema import ExportSchema
from schema_porter.schema.project import ProjectSchema
from schema_porter.tasks import LongTask

console = Console()

ITEM_TYPE_STRATEGIES = {"reuse": "reuse_existing", "rename": "rename"}
PLUGIN_STRATEGIES = {"reuse": "reuse_existing", "skip": "skip"}


# ============================================================================
# Helpers
# ============================================================================


def _load_import_settings() -> ImportSettings:
    """Import settings from porter.toml, or defaults when there is none."""
    try:
        return load_porter_config().import_settings
    except (FileNotFoundError, ValueError):
        return ImportSettings()


async def _open_client(args: argparse.Namespace) -> AsyncCmaAdapter | None:
    """Create the adapter for the current profile, or print why not."""
    try:
        return await get_client(
            profile_name=getattr(args, "profile", None),
            api_token=getattr(args, "api_token", None),
            env_prefix=getattr(args, "env_prefix", ""),
        )
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None


async def _load_document(args: argparse.Namespace) -> tuple[str, ExportSchema]:
    """Read the export document named by ``FILE`` or ``--recipe-url``."""
    if getattr(args, "recipe_url", None):
        return await fetch_recipe(args.recipe_url)
    if not args.file:
        raise SchemaPorterError("Pass an export document FILE or --recipe-url")
    path = Path(args.file)
    return path.stem, ExportSchema(load_export_document(path))


def _render_graph(graph: Graph) -> Table:
    table = Table(title="Dependency Graph", show_header=True, header_style="bold")
    table.add_column("Depth", justify="right", style="dim")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("API key / package", style="dim")
    table.add_column("Links to")

    for node in sorted(graph.nodes, key=lambda n: (n.depth, n.order)):
        targets = [graph.node_by_id(e.target) for e in find_outbound_edges(graph, node.id)]
        links = ", ".join(t.label for t in targets if t is not None)
        if node.kind == "item_type":
            kind = node.item_type.kind_label
            if node.excluded:
                kind += " [dim](not selected)[/dim]"
            key = node.item_type.api_key
        else:
            kind = "Plugin"
            key = node.plugin.package_name or node.plugin.url or ""
        table.add_row(str(node.depth), kind, node.label, key, links)
    return table


def _render_conflicts(conflicts: ConflictMap, export_schema: ExportSchema) -> Table:
    table = Table(title="Conflicts", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("In document")
    table.add_column("In project")

    for export_id, target in conflicts.item_types.items():
        source = export_schema.get_item_type(export_id)
        table.add_row(
            source.kind_label,
            f"{source.name} ({source.api_key})",
            f"{target.name} ({target.api_key}) [dim]{target.kind_label}[/dim]",
        )
    for export_id, target in conflicts.plugins.items():
        source = export_schema.get_plugin(export_id)
        table.add_row("Plugin", source.name, target.name)
    return table


def _render_plan(doc: ImportDoc) -> Table:
    table = Table(title="Import Plan", show_header=True, header_style="bold")
    table.add_column("Action")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Details", style="dim")

    for plugin in doc.plugins.entities_to_create:
        table.add_row("[green]create[/green]", "Plugin", plugin.name, "")
    for entry in doc.item_types.entities_to_create:
        renamed = f"renamed to {entry.api_key}" if entry.rename else ""
        details = f"{len(entry.fields)} fields, {len(entry.fieldsets)} fieldsets"
        table.add_row(
            "[green]create[/green]",
            entry.entity.kind_label,
            entry.name,
            f"{details} {renamed}".strip(),
        )
    for export_id, target_id in doc.item_types.ids_to_reuse.items():
        table.add_row("[cyan]reuse[/cyan]", "Item type", export_id, f"-> {target_id}")
    for export_id, target_id in doc.plugins.ids_to_reuse.items():
        table.add_row("[cyan]reuse[/cyan]", "Plugin", export_id, f"-> {target_id}")
    for plugin_id in doc.skipped_plugin_ids:
        table.add_row("[yellow]skip[/yellow]", "Plugin", plugin_id, "")
    return table


def _render_summary(result: ImportResult, doc: ImportDoc) -> Table:
    table = Table(title="Import Summary", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Created", justify="right")
    table.add_column("Reused", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")

    reused = {
        "plugin": len(doc.plugins.ids_to_reuse),
        "item_type": len(doc.item_types.ids_to_reuse),
    }
    skipped = {"plugin": len(doc.skipped_plugin_ids)}
    for kind, label in (
        ("plugin", "Plugins"),
        ("item_type", "Item types"),
        ("fieldset", "Fieldsets"),
        ("field", "Fields"),
    ):
        failed = sum(1 for f in result.failed if f.kind == kind)
        table.add_row(
            label,
            str(len(result.created.get(kind, []))),
            str(reused.get(kind, 0)),
            str(skipped.get(kind, 0)),
            f"[red]{failed}[/red]" if failed else "0",
        )
    return table


@contextlib.contextmanager
def _cancel_on_interrupt(task: LongTask):
    """Route Ctrl-C to ``task.request_cancel`` while the block runs."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, task.request_cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    previous_profile = read_profile_lock()

    console.print("Connecting to project...", style="dim")

    result = await connect_and_validate(
        profile_name=getattr(args, "profile", None),
        env_prefix=getattr(args, "env_prefix", ""),
    )

    console.print()
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print(
        f"[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{result.profile_name}[/bold cyan]"
    )
    console.print(f"  Project: {result.site_name}")
    console.print(f"  Locales: {', '.join(result.locales) or '-'}")

    if previous_profile and previous_profile != result.profile_name:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
        )
    return 0


async def _async_graph(args: argparse.Namespace) -> int:
    """Async implementation for graph command."""
    client = await _open_client(args)
    if client is None:
        return 1

    async with ProjectSchema(client, _load_import_settings().read_concurrency, close_client=True) as project:
        root = await project.get_item_type_by_api_key(args.root)
        selected = [root.id]
        for api_key in args.select or []:
            selected.append((await project.get_item_type_by_api_key(api_key)).id)

        with console.status("Scanning schema..."):
            graph = await build_graph(
                project,
                [root.id],
                selected_item_type_ids=selected if args.select else None,
            )

    console.print(_render_graph(graph))
    console.print(
        f"\n{len(graph.item_type_nodes())} item types, {len(graph.plugin_nodes())} plugins, "
        f"{len(graph.edges)} edges, {len(get_connected_components(graph))} components, "
        f"{count_cycles(graph)} cycles"
    )
    return 0


async def _async_export(args: argparse.Namespace) -> int:
    """Async implementation for export command."""
    client = await _open_client(args)
    if client is None:
        return 1

    task = LongTask()
    async with ProjectSchema(client, _load_import_settings().read_concurrency, close_client=True) as project:
        with _cancel_on_interrupt(task), console.status("Exporting...") as status:

            def on_progress(update) -> None:
                status.update(f"Exporting ({update.done}/{update.total}) {update.label}")

            if args.all:
                doc = await build_full_export_doc(
                    project, on_progress=on_progress, should_cancel=task.is_cancel_requested
                )
            else:
                if not args.root:
                    console.print("[red]Error: --root is required unless --all is given[/red]")
                    return 1
                root = await project.get_item_type_by_api_key(args.root)
                item_type_ids = [root.id]
                for api_key in args.select or []:
                    item_type_ids.append((await project.get_item_type_by_api_key(api_key)).id)

                graph = await build_graph(project, [root.id], selected_item_type_ids=item_type_ids)
                if args.with_dependencies:
                    expansion = expand_selection_with_dependencies(
                        graph,
                        item_type_ids,
                        installed_plugin_ids=await project.get_known_plugin_ids(),
                    )
                    item_type_ids = expansion.item_type_ids
                    plugin_ids = expansion.plugin_ids
                    if expansion.added_item_type_ids or expansion.added_plugin_ids:
                        console.print(
                            f"[dim]Added {len(expansion.added_item_type_ids)} item types and "
                            f"{len(expansion.added_plugin_ids)} plugins as dependencies[/dim]"
                        )
                else:
                    plugin_ids = []
                    for item_type_id in item_type_ids:
                        for edge in find_outbound_edges(graph, item_type_node_id(item_type_id)):
                            node = graph.node_by_id(edge.target)
                            if node is not None and node.kind == "plugin" and node.entity_id not in plugin_ids:
                                plugin_ids.append(node.entity_id)

                doc = await build_export_doc(
                    project,
                    root.id,
                    item_type_ids,
                    plugin_ids,
                    on_progress=on_progress,
                    should_cancel=task.is_cancel_requested,
                )

    dump_export_document(doc, args.output)
    console.print(
        f"[bold green]v[/bold green] Exported {len(doc.item_types)} item types, "
        f"{len(doc.fields)} fields and {len(doc.plugins)} plugins to "
        f"[bold]{args.output}[/bold]"
    )
    return 0


async def _async_conflicts(args: argparse.Namespace) -> int:
    """Async implementation for conflicts command."""
    label, export_schema = await _load_document(args)

    client = await _open_client(args)
    if client is None:
        return 1

    async with ProjectSchema(client, close_client=True) as project:
        conflicts = await detect_conflicts(export_schema, project)

    if conflicts.is_empty:
        console.print(f"[bold green]v[/bold green] No conflicts for [bold]{label}[/bold]")
        return 0

    console.print(_render_conflicts(conflicts, export_schema))
    console.print(f"\n{len(conflicts)} conflicts")
    return 0


async def _async_import(args: argparse.Namespace) -> int:
    """Async implementation for import command.

    Requires ``--dry-run`` or ``--confirm``.
    """
    if not args.dry_run and not args.confirm:
        console.print("[yellow]Pass --dry-run to preview or --confirm to import.[/yellow]")
        return 1

    label, export_schema = await _load_document(args)
    settings = _load_import_settings()

    client = await _open_client(args)
    if client is None:
        return 1

    async with ProjectSchema(client, settings.read_concurrency, close_client=True) as project:
        conflicts = await detect_conflicts(export_schema, project)
        target_item_types = await project.get_all_item_types()

        mass = MassDefaults(
            item_types_strategy=ITEM_TYPE_STRATEGIES.get(args.item_types),
            plugins_strategy=PLUGIN_STRATEGIES.get(args.plugins),
        )
        # Only entities the import will actually reach need a resolution
        reused_ids = [
            item_type_id
            for item_type_id, resolution in build_resolutions(
                conflicts, export_schema.item_types, target_item_types, mass=mass
            ).item_types.items()
            if isinstance(resolution, ReuseExisting)
        ]
        graph = await build_graph_from_export(export_schema, item_type_ids_to_skip=reused_ids)
        included_item_type_ids = graph.item_type_ids()
        included_plugin_ids = graph.plugin_ids()

        resolutions = build_resolutions(
            conflicts,
            export_schema.item_types,
            target_item_types,
            mass=mass,
            included_item_type_ids=included_item_type_ids,
            included_plugin_ids=included_plugin_ids,
        )
        errors = validate_resolutions(
            conflicts,
            resolutions,
            export_schema.item_types,
            target_item_types,
            included_item_type_ids=included_item_type_ids,
            included_plugin_ids=included_plugin_ids,
            mass=mass,
        )
        if errors:
            console.print(_render_conflicts(conflicts, export_schema))
            console.print("\n[bold red]x[/bold red] Conflicts must be resolved first:")
            for key, message in errors.items():
                console.print(f"  {key}: {message}")
            console.print("[dim]Use --item-types and --plugins to choose a strategy.[/dim]")
            return 1

        doc = build_import_doc(export_schema, conflicts, resolutions, target_item_types)
        console.print(_render_plan(doc))

        if args.dry_run:
            console.print("\n[dim]Dry run, nothing was written.[/dim]")
            return 0

        concurrency = ImportConcurrency(
            plugins=settings.plugin_concurrency,
            item_types=settings.item_type_concurrency,
            fields=settings.field_concurrency,
            item_types_in_parallel=settings.item_types_in_parallel,
            finalize=settings.finalize_concurrency,
            reorder=settings.reorder_concurrency,
        )
        task = LongTask()

        with ProgressBar(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as bar:
            bar_id = bar.add_task(f"Importing {label}", total=None)

            def on_progress(update) -> None:
                task.set_progress(update)
                bar.update(bar_id, completed=update.done, total=update.total, description=update.label)

            task.start()
            with _cancel_on_interrupt(task):
                result = await import_schema(
                    doc,
                    project.client,
                    on_progress=on_progress,
                    should_cancel=task.is_cancel_requested,
                    concurrency=concurrency,
                    abort_on_failure=args.abort_on_failure,
                )
            task.complete()

    console.print(_render_summary(result, doc))
    for failure in result.failed:
        console.print(f"  [red]x[/red] {failure.label}: {failure.error}")

    if result.status == "cancelled":
        console.print(
            f"\n[yellow]Import cancelled after {result.done} of {result.total} steps.[/yellow]"
        )
        return 1
    if not result.ok:
        console.print("\n[bold red]x[/bold red] Import finished with errors")
        return 1

    console.print("\n[bold green]v[/bold green] Import complete")
    return 0


# ============================================================================
# Sync command wrappers (cmd_status, cmd_profiles read local files only)
# ============================================================================


def _run(coro) -> int:
    """Run an async command, printing library errors instead of tracebacks."""
    try:
        return asyncio.run(coro)
    except SchemaPorterError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


def cmd_connect(args: argparse.Namespace) -> int:
    """Check a profile against its project and remember it."""
    return _run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config) -- no API calls.

    Returns:
        0 always (informational command).
    """
    try:
        profile = get_active_profile_name(env_prefix=getattr(args, "env_prefix", ""))
    except ProfileNotFoundError:
        profile = None

    if not profile:
        console.print("[yellow]No profile configured.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]PORTER_PROFILE=<name> schema-porter connect[/cyan]")
        return 0

    table = Table(title="Connection Status", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
    source = ".porter-profile (validated)" if profile == read_profile_lock() else "environment"
    table.add_row("Profile source", source)

    try:
        config = load_porter_config()
        if profile in config.profiles:
            p = config.profiles[profile]
            table.add_row("Environment", p.environment or "(primary)")
            table.add_row("API", p.base_url)
            if p.description:
                table.add_row("Description", p.description)
        else:
            table.add_row("Warning", "[yellow]profile not in porter.toml[/yellow]")
    except (FileNotFoundError, ValueError):
        table.add_row("Warning", "[yellow]porter.toml not found[/yellow]")

    console.print(table)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from porter.toml.

    Returns:
        0 on success, 1 if porter.toml is missing or invalid.
    """
    try:
        config = load_porter_config()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Project Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Environment")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(
            marker,
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            profile.environment or "(primary)",
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_graph(args: argparse.Namespace) -> int:
    """Show the dependency graph reachable from an item type."""
    return _run(_async_graph(args))


def cmd_export(args: argparse.Namespace) -> int:
    """Write an export document."""
    return _run(_async_export(args))


def cmd_conflicts(args: argparse.Namespace) -> int:
    """Compare an export document with the current project."""
    return _run(_async_conflicts(args))


def cmd_import(args: argparse.Namespace) -> int:
    """Import an export document into the current project."""
    return _run(_async_import(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        prog="schema-porter",
        description="Export and import content schemas between projects",
    )

    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix CI_ reads CI_PORTER_PROFILE)"
        ),
    )
    parser.add_argument("--profile", help="Profile from porter.toml (overrides the active one)")
    parser.add_argument("--api-token", help="Use this API token instead of a profile")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_connect = subparsers.add_parser("connect", help="Check a profile and remember it")
    p_connect.set_defaults(func=cmd_connect)

    p_status = subparsers.add_parser("status", help="Show current connection status")
    p_status.set_defaults(func=cmd_status)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_graph = subparsers.add_parser("graph", help="Show the dependency graph of an item type")
    p_graph.add_argument("--root", required=True, help="API key of the root item type")
    p_graph.add_argument(
        "--select",
        nargs="*",
        help="API keys of selected item types (others are shown as not selected)",
    )
    p_graph.set_defaults(func=cmd_graph)

    p_export = subparsers.add_parser("export", help="Write an export document")
    p_export.add_argument("--root", help="API key of the root item type")
    p_export.add_argument("--select", nargs="*", help="API keys of further item types to export")
    p_export.add_argument(
        "--with-dependencies",
        action="store_true",
        help="Also export every item type and plugin the selection links to",
    )
    p_export.add_argument("--all", action="store_true", help="Export the whole project")
    p_export.add_argument("--output", "-o", required=True, help="Output JSON file")
    p_export.set_defaults(func=cmd_export)

    for name, help_text, func in (
        ("conflicts", "Compare an export document with the current project", cmd_conflicts),
        ("import", "Import an export document into the current project", cmd_import),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("file", nargs="?", help="Export document (JSON)")
        p.add_argument("--recipe-url", help="Fetch the export document from a URL")
        p.set_defaults(func=func)
        if name == "import":
            p.add_argument(
                "--item-types",
                choices=sorted(ITEM_TYPE_STRATEGIES),
                help="Resolve every item type conflict this way",
            )
            p.add_argument(
                "--plugins",
                choices=sorted(PLUGIN_STRATEGIES),
                help="Resolve every plugin conflict this way",
            )
            p.add_argument("--dry-run", action="store_true", help="Show the plan without writing")
            p.add_argument("--confirm", action="store_true", help="Actually perform the import")
            p.add_argument(
                "--abort-on-failure",
                action="store_true",
                help="Stop at the first entity that cannot be created",
            )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
