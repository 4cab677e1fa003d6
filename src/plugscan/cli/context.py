"""Shared helpers for CLI commands."""

import click

from plugscan.core.config import load_settings
from plugscan.manager import PluginManager

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INVALID_ARGS = 2
EXIT_SCAN_FAILED = 3
EXIT_LAUNCH_FAILURE = 4
EXIT_CANCELLED = 130


def open_manager(ctx: click.Context) -> PluginManager:
    """Build a PluginManager for the data directory selected on the command line.

    Raises:
        ValidationError: If the settings file is malformed
    """
    settings = load_settings(ctx.obj.get("data_dir"))
    manager = PluginManager(settings)
    manager.add_default_formats()
    manager.restore_user_plugins()
    return manager
