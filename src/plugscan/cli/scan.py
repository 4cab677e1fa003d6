"""Scan CLI command."""

import click

from plugscan.cli.context import (
    EXIT_CANCELLED,
    EXIT_ERROR,
    EXIT_LAUNCH_FAILURE,
    EXIT_SCAN_FAILED,
    open_manager,
)
from plugscan.cli.output import OutputFormatter
from plugscan.core.errors import PlugscanError
from plugscan.core.logging import ProgressReporter
from plugscan.models.error import ErrorCode, StructuredError
from plugscan.scanner.events import (
    ProbeStarted,
    ProgressUpdated,
    ScanEvent,
    ScanFailed,
)

_WAIT_SLICE = 0.2


@click.command()
@click.option(
    "--plugin-format",
    "-F",
    "formats",
    multiple=True,
    help="Format to scan (repeatable, default: every scannable format)",
)
@click.pass_context
def scan(ctx: click.Context, formats: tuple[str, ...]) -> None:
    """Scan for plugins in an isolated worker process.

    Progress goes to stderr; the resulting plugin list goes to stdout.
    """
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        manager = open_manager(ctx)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    reporter = ProgressReporter("Scanning plugins")
    failure: list[str] = []

    def on_event(event: ScanEvent) -> None:
        if isinstance(event, ProbeStarted):
            reporter.started(event.identifier)
        elif isinstance(event, ProgressUpdated):
            reporter.set_fraction(event.fraction)
        elif isinstance(event, ScanFailed):
            failure.append(event.reason)

    manager.add_listener(on_event)

    try:
        launched = manager.scan_plugins(formats)
    except PlugscanError as e:
        formatter.error(e.to_structured_error())
        ctx.exit(EXIT_ERROR)

    if not launched:
        formatter.error(
            StructuredError(
                code=ErrorCode.LAUNCH_FAILURE,
                message="Could not start the scan worker",
                remediation="Check worker_command in settings.yaml",
                retryable=True,
            )
        )
        ctx.exit(EXIT_LAUNCH_FAILURE)

    try:
        while not manager.wait_for_scan(_WAIT_SLICE):
            pass
    except KeyboardInterrupt:
        manager.shutdown()
        reporter.finish("Cancelled")
        ctx.exit(EXIT_CANCELLED)

    reporter.finish("Failed" if failure else "Complete")

    known = manager.known_plugins
    formatter.output(
        {
            "status": "failed" if failure else "finished",
            "reason": failure[0] if failure else None,
            "plugins": [desc.model_dump(mode="json") for desc in known.types],
            "blacklist": known.blacklist,
        }
    )
    if failure:
        ctx.exit(EXIT_SCAN_FAILED)
