"""Shared test fixtures for the plugscan test suite."""

from __future__ import annotations

import json
import os
import queue
import subprocess
import textwrap
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from plugscan.core import logging as log
from plugscan.core.config import DATA_DIR_ENV, ScannerSettings
from plugscan.ipc.protocol import Message, read_message, write_message
from plugscan.models.description import PluginDescription

PYTHON_PLUGIN_TEMPLATE = """\
from plugscan.plugins.interface import AudioPlugin
{prelude}

class {class_name}(AudioPlugin):
    name = {name!r}
    version = {version!r}
    manufacturer = "Test Audio"
    category = {category!r}
"""


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep every test away from the real ~/.plugscan and global log state."""
    monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "data"))
    log.configure_logging(log_format="text", quiet=True)
    log.set_verbose(False)
    log.set_process_label(None)


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture()
def plugin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture()
def settings(data_dir: Path) -> ScannerSettings:
    """Settings with short timeouts suitable for tests."""
    return ScannerSettings(
        data_dir=data_dir,
        scan_timeout=5.0,
        health_check_interval=0.05,
        quit_timeout=1.0,
    )


@pytest.fixture()
def make_python_plugin() -> Callable[..., Path]:
    """Factory writing a single-file Python plugin.

    ``prelude`` is module-level code run on import, e.g. to crash or hang.
    """

    def factory(
        directory: Path,
        stem: str,
        name: str | None = None,
        version: str = "1.0.0",
        category: str = "Effect",
        prelude: str = "",
    ) -> Path:
        path = directory / f"{stem}.py"
        path.write_text(
            PYTHON_PLUGIN_TEMPLATE.format(
                prelude=textwrap.dedent(prelude),
                class_name=stem.title().replace("_", ""),
                name=stem.title() if name is None else name,
                version=version,
                category=category,
            ),
            encoding="utf-8",
        )
        return path

    return factory


@pytest.fixture()
def make_bundle(make_python_plugin: Callable[..., Path]) -> Callable[..., Path]:
    """Factory writing a bundle directory with plugin.json and its entry point."""

    def factory(directory: Path, bundle_name: str, **manifest_overrides) -> Path:
        bundle = directory / bundle_name
        bundle.mkdir()
        make_python_plugin(bundle, "main", name=bundle_name)
        manifest = {
            "name": bundle_name,
            "version": "2.0.0",
            "manufacturer": "Bundle Audio",
            "entry_point": "main.py",
            "plugin_class": "Main",
            "category": "Delay",
        }
        manifest.update(manifest_overrides)
        (bundle / "plugin.json").write_text(json.dumps(manifest), encoding="utf-8")
        return bundle

    return factory


def description(identifier: str, format_name: str = "Python", **fields) -> PluginDescription:
    return PluginDescription(format_name=format_name, file_or_identifier=identifier, **fields)


@pytest.fixture()
def make_description() -> Callable[..., PluginDescription]:
    return description


class FakeProcess:
    """Stand-in for a worker ``subprocess.Popen`` driven by the test.

    The supervisor talks to ``stdin``/``stdout`` as usual; the test plays
    the worker through ``send``/``receive``.
    """

    def __init__(self, pid: int = 4242) -> None:
        to_worker_read, to_worker_write = os.pipe()
        from_worker_read, from_worker_write = os.pipe()
        self.stdin = os.fdopen(to_worker_write, "wb")
        self.stdout = os.fdopen(from_worker_read, "rb")
        self._worker_in = os.fdopen(to_worker_read, "rb")
        self._worker_out = os.fdopen(from_worker_write, "wb")
        self.pid = pid
        self.returncode: int | None = None
        self.killed = False
        self._exited = threading.Event()

    def send(self, message: Message) -> None:
        write_message(self._worker_out, message)

    def receive(self) -> Message:
        return read_message(self._worker_in)

    def exit(self, code: int = 0) -> None:
        if self.returncode is None:
            self.returncode = code
        for stream in (self._worker_out, self._worker_in):
            try:
                stream.close()
            except OSError:
                pass
        self._exited.set()

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if not self._exited.wait(timeout):
            raise subprocess.TimeoutExpired("fake-worker", timeout)
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


class FakePopen:
    """Popen replacement handing out FakeProcesses in launch order."""

    def __init__(self) -> None:
        self.launched: "queue.Queue[FakeProcess]" = queue.Queue()
        self.calls: list[list[str]] = []
        self.on_launch: Callable[[FakeProcess], None] | None = None

    def __call__(self, args: list[str], **kwargs) -> FakeProcess:
        self.calls.append(list(args))
        process = FakeProcess(pid=4242 + len(self.calls))
        if self.on_launch is not None:
            self.on_launch(process)
        self.launched.put(process)
        return process

    def next_process(self, timeout: float = 5.0) -> FakeProcess:
        return self.launched.get(timeout=timeout)


@pytest.fixture()
def fake_popen() -> FakePopen:
    return FakePopen()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
