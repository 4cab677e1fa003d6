"""Scan notifications and their delivery.

Notifications are a small closed set of event types. They are delivered
by an ``AsyncDispatcher`` thread, never on the thread that received the
underlying worker message and never while scanner state is locked, so a
listener may call straight back into the scanner.
"""

import queue
import threading
import time
import traceback
from collections.abc import Callable
from dataclasses import dataclass

from plugscan.core import logging as log


@dataclass(frozen=True)
class ProbeStarted:
    """The worker started probing ``identifier``."""

    identifier: str


@dataclass(frozen=True)
class ProgressUpdated:
    """Progress through the current format, in [0, 1]."""

    fraction: float


@dataclass(frozen=True)
class ScanFinished:
    """The worker completed every requested format."""


@dataclass(frozen=True)
class ScanFailed:
    """The scan was abandoned after repeated worker crashes."""

    reason: str


@dataclass(frozen=True)
class PluginListChanged:
    """The host-visible plugin list was reloaded."""


ScanEvent = ProbeStarted | ProgressUpdated | ScanFinished | ScanFailed | PluginListChanged
Listener = Callable[[ScanEvent], None]


class ListenerList:
    """Thread-safe subscription list."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def call(self, event: ScanEvent) -> None:
        """Deliver ``event`` to a snapshot of the listeners.

        A failing listener is logged and does not stop delivery.
        """
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                log.error(
                    f"Scan listener failed on {type(event).__name__}: {e}",
                    traceback=traceback.format_exc(),
                )


_STOP = object()


class AsyncDispatcher:
    """Single background thread running posted callbacks and periodic ticks.

    Every state change that needs follow-up work is posted here, so that
    work always runs on one thread, outside any lock held by the poster.
    """

    def __init__(
        self,
        on_tick: Callable[[], None],
        interval: float,
        name: str = "plugscan-dispatch",
    ) -> None:
        """Initialize the dispatcher.

        Args:
            on_tick: Called every ``interval`` seconds
            interval: Tick period in seconds
            name: Thread name
        """
        self._on_tick = on_tick
        self._interval = interval
        self._queue: queue.Queue = queue.Queue()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._stopping = threading.Event()

    def start(self) -> None:
        self._thread.start()

    def post(self, callback: Callable[[], None]) -> bool:
        """Queue a callback.

        Returns:
            False if the dispatcher is stopping
        """
        if self._stopping.is_set():
            return False
        self._queue.put(callback)
        return True

    def stop(self) -> None:
        """Stop after the callback currently running, dropping queued ones."""
        self._stopping.set()
        self._queue.put(_STOP)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the thread to end.

        Returns:
            True if the thread has ended (False when called from the thread itself)
        """
        if self.is_dispatch_thread():
            return False
        if self._thread.is_alive():
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_dispatch_thread(self) -> bool:
        return threading.current_thread() is self._thread

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        next_tick = time.monotonic() + self._interval
        while True:
            timeout = max(0.0, next_tick - time.monotonic())
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                item = None

            if item is _STOP:
                return
            if self._stopping.is_set():
                continue

            if item is not None:
                self._invoke(item)

            if time.monotonic() >= next_tick:
                next_tick = time.monotonic() + self._interval
                if not self._stopping.is_set():
                    self._invoke(self._on_tick)

    @staticmethod
    def _invoke(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            log.error(f"Scanner callback failed: {e}", traceback=traceback.format_exc())
