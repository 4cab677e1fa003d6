"""Host-facing scanner facade."""

import threading
from collections.abc import Callable, Iterable

from plugscan.core import logging as log
from plugscan.core.config import ScannerSettings
from plugscan.plugins.known_list import PluginList
from plugscan.scanner.events import (
    Listener,
    ListenerList,
    PluginListChanged,
    ScanEvent,
    ScanFailed,
    ScanFinished,
)
from plugscan.scanner.master import ScannerMaster


class PluginScanner:
    """Runs background plugin scans on behalf of the host.

    Each scan gets a fresh ScannerMaster. When a scan ends, the worker's
    result file is merged into the host's PluginList before listeners
    hear about it, so they can read the updated list straight away.
    """

    def __init__(
        self,
        plugin_list: PluginList,
        settings: ScannerSettings,
        master_factory: Callable[[ScannerSettings, PluginList], ScannerMaster] = ScannerMaster,
    ) -> None:
        """Initialize the facade.

        Args:
            plugin_list: Host list to keep up to date
            settings: Scanner settings
            master_factory: Creates the supervisor for each scan
        """
        self._list = plugin_list
        self._settings = settings
        self._master_factory = master_factory
        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._master: ScannerMaster | None = None
        self._master_listener: Listener | None = None
        self._listeners = ListenerList()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def is_scanning(self) -> bool:
        with self._lock:
            master = self._master
        return master is not None and master.is_running()

    def progress(self) -> float:
        with self._lock:
            master = self._master
        return master.progress() if master is not None else -1.0

    def known_plugins(self) -> PluginList:
        """Snapshot of the host list, including the blacklist."""
        return self._list.copy()

    def start_scan(self, formats: Iterable[str]) -> bool:
        """Start scanning ``formats`` in a new worker.

        Returns True without doing anything if a scan is already running.

        Returns:
            False if the worker could not be launched
        """
        # Held across check, swap and launch: at most one worker per facade.
        with self._start_lock:
            if self.is_scanning():
                return True

            master = self._master_factory(self._settings, self._list)
            listener = self._make_forwarder(master)
            master.add_listener(listener)

            with self._lock:
                previous, previous_listener = self._master, self._master_listener
                self._master, self._master_listener = master, listener

            if previous is not None:
                if previous_listener is not None:
                    previous.remove_listener(previous_listener)
                previous.cancel()

            return master.start_scan(formats)

    def cancel(self) -> None:
        with self._lock:
            master = self._master
        if master is not None:
            master.cancel()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current scan session is over."""
        with self._lock:
            master = self._master
        return master is None or master.wait(timeout)

    def _make_forwarder(self, master: ScannerMaster) -> Listener:
        def forward(event: ScanEvent) -> None:
            with self._lock:
                current = self._master is master
            if not current:
                return
            if isinstance(event, (ScanFinished, ScanFailed)):
                self._reload()
                self._listeners.call(event)
                self._listeners.call(PluginListChanged())
            else:
                self._listeners.call(event)

        return forward

    def _reload(self) -> None:
        scan_file = self._settings.scan_list_file
        if not scan_file.exists():
            log.debug("Scan produced no result file")
            return
        self._list.merge_file(scan_file)
