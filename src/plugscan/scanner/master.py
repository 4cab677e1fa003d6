"""Scan supervisor: launches and monitors the isolated scan worker.

State machine (supervisor's view of the worker)::

    idle --start_scan--> waiting --state:scanning--> scanning --state:finished--> finished
      any --cancel--> quitting --worker exited / killed--> idle
      waiting|scanning --crash or stall--> (relaunch) waiting
      waiting|scanning --too many crashes without progress--> failed

Threads: a reader thread per worker connection decodes messages and
updates the session under ``_lock``; everything else (sending the scan
request, health checks, relaunching, teardown, listener notifications)
runs on the ``AsyncDispatcher`` thread with the lock released.
"""

import subprocess
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from enum import Enum

from plugscan.core import logging as log
from plugscan.core.config import ScannerSettings
from plugscan.core.errors import LaunchFailureError, ProtocolError, WorkerCrashError
from plugscan.ipc.channel import MessageChannel
from plugscan.ipc.protocol import Message, MessageType, WorkerState
from plugscan.plugins.known_list import PluginList
from plugscan.scanner.events import (
    AsyncDispatcher,
    Listener,
    ListenerList,
    ProbeStarted,
    ProgressUpdated,
    ScanEvent,
    ScanFailed,
    ScanFinished,
)

UNKNOWN_PROGRESS = -1.0


class ScanState(str, Enum):
    """Lifecycle of a scan session."""

    IDLE = "idle"
    WAITING = "waiting"
    SCANNING = "scanning"
    FINISHED = "finished"
    QUITTING = "quitting"
    FAILED = "failed"


@dataclass
class ScanSession:
    """Mutable state of one scan, guarded by the supervisor lock."""

    state: ScanState = ScanState.IDLE
    formats: list[str] = field(default_factory=list)
    running: bool = False
    alive: bool = False
    ready: bool = False
    current_identifier: str | None = None
    progress: float = UNKNOWN_PROGRESS
    launches: int = 0
    probes_since_launch: int = 0
    stalled_crashes: int = 0
    last_crash_identifier: str | None = None
    last_message_at: float = 0.0
    quit_requested_at: float | None = None


class ScannerMaster:
    """Owns the scan worker process for one scan session."""

    def __init__(
        self,
        settings: ScannerSettings,
        plugin_list: PluginList,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        """Initialize the supervisor.

        Args:
            settings: Scanner settings (timeouts, worker command, data files)
            plugin_list: Host list that receives results recovered after a crash
            popen: Process factory
        """
        self._settings = settings
        self._list = plugin_list
        self._popen = popen

        self._lock = threading.Lock()
        self._session = ScanSession()
        self._generation = 0
        self._process: subprocess.Popen | None = None
        self._channel: MessageChannel | None = None
        self._reader: threading.Thread | None = None
        self._dispatcher: AsyncDispatcher | None = None

        self._listeners = ListenerList()
        self._done = threading.Event()
        self._done.set()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.add(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def is_running(self) -> bool:
        with self._lock:
            return self._session.running

    def progress(self) -> float:
        with self._lock:
            return self._session.progress

    @property
    def state(self) -> ScanState:
        with self._lock:
            return self._session.state

    def session(self) -> ScanSession:
        """Copy of the current session."""
        with self._lock:
            return replace(self._session, formats=list(self._session.formats))

    def start_scan(self, formats: Iterable[str]) -> bool:
        """Launch a worker and scan ``formats``.

        Returns immediately. Does nothing (and returns True) when a scan
        is already running.

        Returns:
            False if the worker process could not be spawned
        """
        formats = list(formats)
        with self._lock:
            if self._session.running:
                return True
            self._session = ScanSession(
                state=ScanState.WAITING,
                formats=formats,
                running=True,
            )
            self._done.clear()

        scan_file = self._settings.scan_list_file
        try:
            scan_file.unlink(missing_ok=True)
        except OSError as e:
            log.warning(f"Cannot clear previous scan results: {e}", path=str(scan_file))

        dispatcher = AsyncDispatcher(
            self._tick, self._settings.health_check_interval, name="plugscan-master"
        )
        # Messages may arrive before start(); they queue until the thread runs.
        self._dispatcher = dispatcher

        try:
            self._launch()
        except LaunchFailureError as e:
            log.error(e.error.message, command=e.error.context)
            with self._lock:
                self._session.state = ScanState.IDLE
                self._session.running = False
            dispatcher.stop()
            self._done.set()
            return False

        dispatcher.start()
        log.debug("Scan worker launched", formats=",".join(formats))
        return True

    def cancel(self) -> None:
        """Ask the worker to quit. Idempotent and a no-op when not running."""
        with self._lock:
            session = self._session
            if not session.running or session.state == ScanState.QUITTING:
                return
            session.state = ScanState.QUITTING
            session.running = False
            session.quit_requested_at = time.monotonic()
            channel = self._channel

        log.debug("Cancelling plugin scan")
        if channel is not None:
            channel.send(Message.quit())
        if self._dispatcher is not None:
            self._dispatcher.post(self._tick)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the session has been torn down.

        Returns:
            True if no session is active any more
        """
        return self._done.wait(timeout)

    def _launch(self) -> None:
        """Spawn a worker and start reading from it.

        Raises:
            LaunchFailureError: If the process cannot be spawned
        """
        args = self._settings.worker_args()
        try:
            process = self._popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                env=self._settings.worker_env(),
                close_fds=True,
            )
        except (OSError, ValueError) as e:
            raise LaunchFailureError(args, str(e))

        channel = MessageChannel(process.stdout, process.stdin, name=f"worker-{process.pid}")

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._process = process
            self._channel = channel
            session = self._session
            session.alive = True
            session.ready = False
            session.launches += 1
            session.probes_since_launch = 0
            session.current_identifier = None
            session.progress = UNKNOWN_PROGRESS
            session.last_message_at = time.monotonic()
            quitting = session.state == ScanState.QUITTING

        self._reader = channel.start_reader(
            lambda message: self._handle_message(generation, message),
            lambda: self._handle_connection_lost(generation),
        )

        if quitting:
            channel.send(Message.quit())

    def _handle_message(self, generation: int, message: Message) -> None:
        """Reader thread: update the session from one worker message."""
        follow_up: Callable[[], None] | None = None
        event: ScanEvent | None = None
        problem: str | None = None

        with self._lock:
            if generation != self._generation:
                return
            session = self._session
            session.last_message_at = time.monotonic()

            # quit takes precedence over anything still in flight
            if not session.running or session.state in (ScanState.QUITTING, ScanState.FAILED):
                return

            if message.type == MessageType.STATE.value:
                status = message.payload.strip()
                if status == WorkerState.READY.value:
                    if not session.ready:
                        session.ready = True
                        follow_up = lambda: self._send_scan_request(generation)
                elif status == WorkerState.SCANNING.value:
                    session.state = ScanState.SCANNING
                elif status == WorkerState.FINISHED.value:
                    session.state = ScanState.FINISHED
                    session.running = False
                    session.progress = 1.0
                    follow_up = self._finish
                else:
                    problem = f"Unknown worker state: {status!r}"

            elif message.type == MessageType.NAME.value:
                session.current_identifier = message.payload
                session.probes_since_launch += 1
                event = ProbeStarted(message.payload)

            elif message.type == MessageType.PROGRESS.value:
                try:
                    fraction = message.fraction()
                except ProtocolError as e:
                    problem = e.error.message
                else:
                    session.progress = fraction
                    event = ProgressUpdated(fraction)

            else:
                problem = f"Unknown message type: {message.type!r}"

        if problem:
            log.warning(f"Ignoring worker message: {problem}")

        dispatcher = self._dispatcher
        if dispatcher is None:
            return
        if follow_up is not None:
            dispatcher.post(follow_up)
        if event is not None:
            dispatcher.post(lambda: self._listeners.call(event))

    def _handle_connection_lost(self, generation: int) -> None:
        """Reader thread: the worker's output stream ended."""
        with self._lock:
            if generation != self._generation:
                return
            self._session.alive = False

        if self._dispatcher is not None:
            self._dispatcher.post(self._tick)

    def _send_scan_request(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._session.running:
                return
            formats = list(self._session.formats)
            channel = self._channel

        if channel is not None:
            log.debug(f"Requesting scan of {', '.join(formats) or 'no formats'}")
            channel.send(Message.scan(formats))

    def _tick(self) -> None:
        """Dispatcher: health check."""
        now = time.monotonic()
        with self._lock:
            session = self._session
            state = session.state
            running = session.running
            alive = session.alive
            last_message_at = session.last_message_at
            quit_requested_at = session.quit_requested_at
            process = self._process

        if state == ScanState.QUITTING:
            if process is None or process.poll() is not None:
                self._teardown()
            elif quit_requested_at is not None and now - quit_requested_at > self._settings.quit_timeout:
                log.warning("Scan worker ignored quit request, killing it", pid=process.pid)
                self._kill(process)
                self._teardown()
            return

        if not running or state not in (ScanState.WAITING, ScanState.SCANNING):
            return

        exit_code = process.poll() if process is not None else -1
        if exit_code is not None:
            self._recover(f"worker exited with code {exit_code}")
        elif not alive:
            self._recover("connection to worker lost")
        elif now - last_message_at > self._settings.scan_timeout:
            log.warning(
                f"Scan worker unresponsive for {self._settings.scan_timeout:g}s, killing it",
                pid=process.pid,
            )
            self._kill(process)
            self._recover("worker timed out")

    def _recover(self, reason: str) -> None:
        """Dispatcher: crash path. Keep what was found, then relaunch or give up."""
        with self._lock:
            session = self._session
            identifier = session.current_identifier
            progressed = (
                session.probes_since_launch > 0
                and identifier != session.last_crash_identifier
            )
            session.stalled_crashes = 1 if progressed else session.stalled_crashes + 1
            session.last_crash_identifier = identifier
            attempts = session.stalled_crashes
            session.progress = UNKNOWN_PROGRESS

        log.warning(
            f"Scan worker crashed ({reason})",
            identifier=identifier,
            attempt=attempts,
        )

        self._reap()
        scan_file = self._settings.scan_list_file
        if scan_file.exists():
            self._list.merge_file(scan_file)
        else:
            log.debug("Crashed worker left no result file")

        with self._lock:
            quitting = self._session.state == ScanState.QUITTING

        if quitting:
            self._teardown()
            return

        if attempts <= self._settings.max_relaunch_attempts:
            try:
                self._launch()
                return
            except LaunchFailureError as e:
                reason = e.error.message

        error = WorkerCrashError(reason, identifier=identifier, attempts=attempts)
        log.error(f"Giving up on plugin scan: {error.error.message}")
        with self._lock:
            self._session.state = ScanState.FAILED
            self._session.running = False
        self._teardown(ScanFailed(error.error.message))

    def _finish(self) -> None:
        """Dispatcher: the worker reported ``finished``."""
        with self._lock:
            channel = self._channel
            process = self._process

        if channel is not None:
            channel.send(Message.quit())
        if process is not None:
            try:
                process.wait(timeout=self._settings.quit_timeout)
            except subprocess.TimeoutExpired:
                log.warning("Scan worker did not exit after finishing, killing it", pid=process.pid)
                self._kill(process)

        log.debug("Plugin scan finished")
        self._teardown(ScanFinished())

    def _kill(self, process: subprocess.Popen) -> None:
        try:
            process.kill()
        except OSError as e:
            log.debug(f"Cannot kill scan worker: {e}", pid=process.pid)

    def _reap(self) -> None:
        """Make sure the current worker is gone and its channel closed."""
        with self._lock:
            process, channel, reader = self._process, self._channel, self._reader
            self._process = None
            self._channel = None
            self._reader = None
            self._session.alive = False

        if process is not None:
            if process.poll() is None:
                self._kill(process)
            try:
                process.wait(timeout=self._settings.quit_timeout)
            except subprocess.TimeoutExpired:
                log.error("Scan worker could not be reaped", pid=process.pid)
        if channel is not None:
            channel.close()
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._settings.quit_timeout)

    def _teardown(self, event: ScanEvent | None = None) -> None:
        """Dispatcher: end the session and deliver the terminal notification."""
        self._reap()
        with self._lock:
            if self._session.state == ScanState.QUITTING:
                self._session.state = ScanState.IDLE
            self._session.running = False

        dispatcher = self._dispatcher
        if dispatcher is not None:
            dispatcher.stop()
        if event is not None:
            self._listeners.call(event)
        self._done.set()
