"""Host-side plugin manager.

Owns the known plugin list, the registered formats and the scanner, and
keeps ``plugins.json`` in sync with the list.
"""

import threading
from collections.abc import Iterable

from plugscan.core import logging as log
from plugscan.core.config import ScannerSettings, load_settings
from plugscan.core.errors import PersistenceError
from plugscan.plugins.directory_scanner import DirectoryScanner
from plugscan.plugins.formats import FormatManager, PluginFormat
from plugscan.plugins.known_list import PluginList
from plugscan.plugins.pedal import CrashMarker
from plugscan.scanner.events import (
    Listener,
    ListenerList,
    ScanEvent,
    ScanFailed,
    ScanFinished,
)
from plugscan.scanner.facade import PluginScanner


class PluginManager:
    """Entry point for hosts: formats, known plugins and background scans."""

    def __init__(self, settings: ScannerSettings | None = None) -> None:
        """Initialize the manager.

        Args:
            settings: Scanner settings (loaded from the data directory if omitted)
        """
        self.settings = settings or load_settings()
        self.known_plugins = PluginList()
        self.format_manager = FormatManager()
        self.crash_marker = CrashMarker(self.settings.dead_plugins_file)

        self._listeners = ListenerList()
        self._scanner = PluginScanner(self.known_plugins, self.settings)
        self._scanner.add_listener(self._handle_scan_event)
        self._unverified: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def add_default_formats(self) -> None:
        """Register the built-in formats and any configured in the settings."""
        self.format_manager.add_default_formats(self.settings.data_dir)
        self.format_manager.add_formats_from_references(self.settings.extra_formats)

    @property
    def formats(self) -> list[PluginFormat]:
        return self.format_manager.formats

    def format(self, name: str) -> PluginFormat:
        """Look up a registered format.

        Raises:
            FormatNotFoundError: If no format has that name
        """
        return self.format_manager.require(name)

    def scannable_format_names(self) -> list[str]:
        return self.format_manager.scannable_names()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def is_scanning(self) -> bool:
        return self._scanner.is_scanning()

    def scan_progress(self) -> float:
        return self._scanner.progress()

    def scan_plugins(self, names: Iterable[str] | None = None) -> bool:
        """Start a background scan of the named formats.

        Does nothing while a scan is running. No names means every format
        that supports scanning.

        Returns:
            False if the scan worker could not be launched

        Raises:
            FormatNotFoundError: If a name is not a registered format
        """
        if self.is_scanning():
            log.debug("Scan already in progress")
            return True

        names = list(names or [])
        if not names:
            names = self.scannable_format_names()
        for name in names:
            self.format(name)

        # The worker merges plugins.json on start, so it must be current.
        self.save_user_plugins()

        with self._lock:
            self._unverified.clear()

        log.info(f"Scanning for plugins: {', '.join(names) or 'no formats'}")
        return self._scanner.start_scan(names)

    def cancel_scan(self) -> None:
        self._scanner.cancel()

    def wait_for_scan(self, timeout: float | None = None) -> bool:
        return self._scanner.wait(timeout)

    def save_user_plugins(self) -> bool:
        """Persist the known list to ``plugins.json``.

        Returns:
            True on success (failures are logged)
        """
        try:
            self.known_plugins.save_file(self.settings.user_plugins_file)
        except PersistenceError as e:
            log.error(e.error.message)
            return False
        return True

    def restore_user_plugins(self) -> bool:
        """Load ``plugins.json`` and blacklist anything a crash left pending.

        Returns:
            True if the file was loaded
        """
        path = self.settings.user_plugins_file
        loaded = path.exists() and self.known_plugins.replace_from_file(path)
        self.update_blacklisted_plugins()
        return loaded

    def update_blacklisted_plugins(self) -> list[str]:
        """Move identifiers left in the crash marker into the blacklist."""
        applied = self.crash_marker.apply_to(self.known_plugins)
        if applied:
            log.warning(
                "Blacklisted plugins that crashed during a previous scan",
                identifiers=",".join(applied),
            )
            self.save_user_plugins()
        return applied

    def unverified_plugins(self, format_name: str) -> list[str]:
        """Candidates for a format that are neither listed nor blacklisted.

        Cached per format until the next scan starts.

        Raises:
            FormatNotFoundError: If no format has that name
        """
        with self._lock:
            cached = self._unverified.get(format_name)
        if cached is not None:
            return list(cached)

        plugin_format = self.format(format_name)
        search_paths = self.settings.search_paths_for(format_name)
        search_paths += plugin_format.default_locations_to_search()
        scanner = DirectoryScanner(
            self.known_plugins, plugin_format, search_paths, self.crash_marker
        )
        candidates = scanner.files

        with self._lock:
            self._unverified[format_name] = list(candidates)
        return candidates

    def unblacklist(self, identifier: str) -> bool:
        """Allow a blacklisted plugin to be scanned again."""
        changed = self.known_plugins.remove_from_blacklist(identifier)
        if changed:
            self.save_user_plugins()
        return changed

    def clear_blacklist(self) -> None:
        self.known_plugins.clear_blacklist()
        self.save_user_plugins()

    def shutdown(self) -> None:
        """Cancel any scan and wait for the worker to go away."""
        self._scanner.cancel()
        self._scanner.wait(self.settings.quit_timeout * 2)
        self._scanner.remove_listener(self._handle_scan_event)

    def _handle_scan_event(self, event: ScanEvent) -> None:
        if isinstance(event, (ScanFinished, ScanFailed)):
            self.save_user_plugins()
        self._listeners.call(event)
