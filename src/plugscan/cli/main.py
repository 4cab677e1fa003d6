"""plugscan CLI entry point and global options."""

import sys
from pathlib import Path
from typing import Literal

import click

from plugscan import __version__
from plugscan.cli.context import EXIT_ERROR
from plugscan.cli.output import OutputFormat, OutputFormatter, set_output_format
from plugscan.cli.plugins import blacklist, formats, list_plugins, search_path, unverified
from plugscan.cli.scan import scan
from plugscan.core.config import WORKER_FLAG
from plugscan.core.errors import handle_error
from plugscan.core.logging import configure_logging, set_verbose


@click.group()
@click.option(
    "--format",
    "-f",
    type=click.Choice(["json", "jsonl", "human"]),
    default="json",
    help="Output format (default: json)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose logging to stderr",
)
@click.option(
    "--quiet",
    "-q",
    is_flag=True,
    default=False,
    help="Suppress progress output",
)
@click.option(
    "--log-format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Log format for stderr (default: text)",
)
@click.option(
    "--data-dir",
    "-D",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    envvar="PLUGSCAN_DATA_DIR",
    help="Data directory (default: $PLUGSCAN_DATA_DIR or ~/.plugscan)",
)
@click.version_option(version=__version__, prog_name="plugscan")
@click.pass_context
def cli(
    ctx: click.Context,
    format: OutputFormat,
    verbose: bool,
    quiet: bool,
    log_format: Literal["text", "json"],
    data_dir: Path | None,
) -> None:
    """plugscan: crash-isolated audio plugin scanner.

    Plugins are probed in a separate worker process, so a plugin that
    crashes or hangs is blacklisted instead of taking the host down.
    """
    ctx.ensure_object(dict)
    ctx.obj = {
        "format": format,
        "verbose": verbose,
        "quiet": quiet,
        "log_format": log_format,
        "data_dir": data_dir.expanduser() if data_dir else None,
        "formatter": OutputFormatter(format=format),
    }

    set_output_format(format)
    set_verbose(verbose)
    configure_logging(log_format=log_format, quiet=quiet)


cli.add_command(scan)
cli.add_command(list_plugins)
cli.add_command(formats)
cli.add_command(unverified)
cli.add_command(blacklist)
cli.add_command(search_path)


def main() -> None:
    """Main entry point.

    ``--scan-worker`` switches the process into scan worker mode before
    click sees the command line.
    """
    if WORKER_FLAG in sys.argv[1:]:
        from plugscan.scanner.worker import run_worker

        sys.exit(run_worker())

    try:
        cli()
    except Exception as e:
        handle_error(e, EXIT_ERROR)


if __name__ == "__main__":
    main()
