"""Plugin list, format and blacklist CLI commands."""

from pathlib import Path

import click

from plugscan.cli.context import EXIT_ERROR, open_manager
from plugscan.cli.output import OutputFormatter
from plugscan.core.config import load_settings, save_settings
from plugscan.core.errors import PlugscanError

PLUGIN_COLUMNS = ["format_name", "name", "manufacturer", "version", "file_or_identifier"]


@click.command("list")
@click.option("--blacklisted", is_flag=True, default=False, help="Show only the blacklist")
@click.pass_context
def list_plugins(ctx: click.Context, blacklisted: bool) -> None:
    """List known plugins and blacklisted identifiers."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    known = manager.known_plugins
    if blacklisted:
        formatter.records(
            [{"identifier": identifier} for identifier in known.blacklist],
            title="Blacklisted plugins",
        )
        return

    plugins = [desc.model_dump(mode="json") for desc in known.types]
    if formatter.is_human():
        formatter.records(plugins, columns=PLUGIN_COLUMNS, title="Known plugins")
        if known.blacklist:
            formatter.records(
                [{"identifier": identifier} for identifier in known.blacklist],
                title="Blacklisted plugins",
            )
    elif formatter.format == "jsonl":
        formatter.records(plugins)
    else:
        formatter.output({"plugins": plugins, "blacklist": known.blacklist})


@click.command()
@click.pass_context
def formats(ctx: click.Context) -> None:
    """List registered plugin formats."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    records = []
    for plugin_format in manager.formats:
        search_paths = manager.settings.search_paths_for(plugin_format.name)
        search_paths += plugin_format.default_locations_to_search()
        records.append(
            {
                "name": plugin_format.name,
                "can_scan": plugin_format.can_scan_for_plugins,
                "search_paths": [str(p) for p in search_paths],
            }
        )
    formatter.records(records, title="Plugin formats")


@click.command()
@click.argument("format_name")
@click.pass_context
def unverified(ctx: click.Context, format_name: str) -> None:
    """List candidates of FORMAT_NAME that have not been scanned yet."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
        candidates = manager.unverified_plugins(format_name)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    formatter.records(
        [{"format_name": format_name, "identifier": c} for c in candidates],
        title=f"Unverified {format_name} plugins",
    )


@click.group()
def blacklist() -> None:
    """Manage plugins excluded from scanning."""
    pass


@blacklist.command("remove")
@click.argument("identifier")
@click.pass_context
def blacklist_remove(ctx: click.Context, identifier: str) -> None:
    """Allow IDENTIFIER to be scanned again."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    removed = manager.unblacklist(identifier)
    formatter.output({"identifier": identifier, "removed": removed})


@blacklist.command("clear")
@click.pass_context
def blacklist_clear(ctx: click.Context) -> None:
    """Remove every entry from the blacklist."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    count = len(manager.known_plugins.blacklist)
    manager.clear_blacklist()
    formatter.output({"cleared": count})


@click.group("search-path")
def search_path() -> None:
    """Manage extra plugin search locations."""
    pass


@search_path.command("add")
@click.argument("format_name")
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def search_path_add(ctx: click.Context, format_name: str, path: Path) -> None:
    """Search PATH for FORMAT_NAME plugins in future scans."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
        manager.format(format_name)
        settings = load_settings(manager.settings.data_dir)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    path = path.resolve()
    paths = settings.search_paths.setdefault(format_name, [])
    if path not in paths:
        paths.append(path)
    settings_file = save_settings(settings)
    formatter.output(
        {
            "format_name": format_name,
            "search_paths": [str(p) for p in paths],
            "settings_file": str(settings_file),
        }
    )
