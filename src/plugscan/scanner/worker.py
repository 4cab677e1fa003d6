"""Scan worker: the isolated process that actually probes plugins.

The worker is the plugscan executable re-invoked with ``--scan-worker``.
It talks to the supervisor over its stdin/stdout pipes, probes one
candidate at a time, and persists the plugin list after every probe so a
crash loses at most the probe in flight (which the crash marker then
blacklists on the next start).
"""

import os
import queue
import signal
import sys
from pathlib import Path

from plugscan.core import logging as log
from plugscan.core.config import ScannerSettings, load_settings
from plugscan.core.errors import PersistenceError, PlugscanError
from plugscan.ipc.channel import MessageChannel
from plugscan.ipc.protocol import Message, MessageType, WorkerState
from plugscan.plugins.directory_scanner import DirectoryScanner
from plugscan.plugins.formats import FormatManager
from plugscan.plugins.known_list import PluginList
from plugscan.plugins.pedal import CrashMarker


class _StopWorker(Exception):
    """Raised inside the scan loop when the worker must exit now."""


class ScannerWorker:
    """Runs scan requests received from the supervisor."""

    def __init__(
        self,
        channel: MessageChannel,
        settings: ScannerSettings,
        formats: FormatManager | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            channel: Channel to the supervisor
            settings: Settings loaded in this process
            formats: Preconfigured formats (default: built-ins plus settings extras)
        """
        self._channel = channel
        self._settings = settings
        self._formats = formats
        self._inbox: queue.Queue[Message | None] = queue.Queue()
        self._list = PluginList()
        self._marker = CrashMarker(settings.dead_plugins_file)
        self._scan_file = settings.scan_list_file

    @property
    def plugin_list(self) -> PluginList:
        return self._list

    def run(self) -> int:
        """Serve the supervisor until told to quit or disconnected.

        Returns:
            Process exit code
        """
        self._channel.start_reader(self._inbox.put, lambda: self._inbox.put(None))

        try:
            self.handle_connection_made()
            while True:
                self._handle(self._inbox.get())
        except _StopWorker as e:
            log.debug(f"Scan worker exiting: {e}")
            return 0
        except PlugscanError as e:
            log.error(f"Scan worker failed: {e.error.message}")
            return 1

    def handle_connection_made(self) -> None:
        """Load the shared list, settle any crashed probe and report ready."""
        if self._formats is None:
            self._formats = FormatManager()
            self._formats.add_default_formats(self._settings.data_dir)
            self._formats.add_formats_from_references(self._settings.extra_formats)

        if self._scan_file.exists():
            self._list.merge_file(self._scan_file)

        # Must run before merging the host list: a crashed probe is never retried.
        self._marker.apply_to(self._list)

        user_file = self._settings.user_plugins_file
        if user_file.exists():
            self._list.merge_file(user_file)

        self._write_list()
        self._send(Message.state(WorkerState.READY))

    def _handle(self, message: Message | None) -> None:
        if message is None:
            raise _StopWorker("connection lost")
        if message.type == MessageType.QUIT.value:
            raise _StopWorker("quit requested")
        if message.type == MessageType.SCAN.value:
            self.scan(message.formats())
        else:
            log.warning(f"Ignoring unknown message from supervisor: {message.type!r}")

    def scan(self, format_names: list[str]) -> None:
        """Scan every named format in order, then report ``finished``."""
        self._send(Message.state(WorkerState.SCANNING))

        for name in format_names:
            self._check_inbox()
            self._scan_format(name)

        self._write_list()
        self._send(Message.state(WorkerState.FINISHED))

    def _scan_format(self, name: str) -> None:
        plugin_format = self._formats.get(name) if self._formats else None
        if plugin_format is None:
            log.warning(f"Skipping unknown plugin format: {name}")
            return
        if not plugin_format.can_scan_for_plugins:
            log.debug(f"Format {name} does not support scanning")
            return

        search_paths: list[Path] = self._settings.search_paths_for(name)
        search_paths += plugin_format.default_locations_to_search()

        scanner = DirectoryScanner(self._list, plugin_format, search_paths, self._marker)
        log.info(f"Scanning {len(scanner.files)} {name} plugin candidate(s)")

        while (identifier := scanner.next_plugin_file()) is not None:
            self._check_inbox()
            self._send(Message.name(identifier))
            scanner.scan_next_file()
            self._write_list()
            self._send(Message.progress(scanner.progress))

    def _check_inbox(self) -> None:
        """Act on messages that arrived while scanning."""
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                return
            if message is not None and message.type == MessageType.SCAN.value:
                log.warning("Ignoring scan request received during a scan")
                continue
            self._handle(message)

    def _write_list(self) -> None:
        try:
            self._list.save_file(self._scan_file)
        except PersistenceError as e:
            log.error(e.error.message)

    def _send(self, message: Message) -> None:
        if not self._channel.send(message):
            raise _StopWorker("connection lost")


def _claim_stdio() -> MessageChannel:
    """Move the pipes to the supervisor off fds 0 and 1.

    Plugin code that prints or reads stdin would otherwise corrupt the
    message stream.
    """
    sys.stdout.flush()
    channel_out = os.fdopen(os.dup(1), "wb")
    channel_in = os.fdopen(os.dup(0), "rb")

    os.dup2(2, 1)
    devnull = os.open(os.devnull, os.O_RDONLY)
    os.dup2(devnull, 0)
    os.close(devnull)
    sys.stdout = sys.stderr

    return MessageChannel(channel_in, channel_out, name="supervisor")


def run_worker(data_dir: Path | None = None) -> int:
    """Entry point of the ``--scan-worker`` mode.

    Returns:
        Process exit code
    """
    log.set_process_label("worker")
    # Ctrl-C reaches the whole process group; the supervisor decides what happens.
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    channel = _claim_stdio()
    try:
        settings = load_settings(data_dir)
    except PlugscanError as e:
        log.error(f"Scan worker cannot load settings: {e.error.message}")
        return 2

    return ScannerWorker(channel, settings).run()
