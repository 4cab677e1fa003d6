"""Tests for the crash marker."""

from __future__ import annotations

from pathlib import Path

from plugscan.plugins.known_list import PluginList
from plugscan.plugins.pedal import CrashMarker

from conftest import description


class TestCrashMarker:
    """Tests for arming, disarming and applying the crash marker."""

    def test_unarmed_marker_has_no_file(self, tmp_path: Path) -> None:
        marker = CrashMarker(tmp_path / "DeadPlugins.txt")
        assert marker.pending() == []
        assert not marker.is_armed()

    def test_arm_writes_identifier(self, tmp_path: Path) -> None:
        path = tmp_path / "DeadPlugins.txt"
        marker = CrashMarker(path)

        marker.arm("/p/a.py")

        assert path.read_text(encoding="utf-8").splitlines() == ["/p/a.py"]
        assert marker.is_armed()

    def test_disarm_removes_file_when_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "DeadPlugins.txt"
        marker = CrashMarker(path)

        marker.arm("/p/a.py")
        marker.disarm("/p/a.py")

        assert not path.exists()

    def test_arm_is_idempotent_and_keeps_others(self, tmp_path: Path) -> None:
        marker = CrashMarker(tmp_path / "DeadPlugins.txt")
        marker.arm("/p/a.py")
        marker.arm("/p/b.py")
        marker.arm("/p/a.py")
        marker.disarm("/p/b.py")
        assert marker.pending() == ["/p/a.py"]

    def test_apply_blacklists_and_clears(self, tmp_path: Path) -> None:
        marker = CrashMarker(tmp_path / "DeadPlugins.txt")
        plugins = PluginList([description("/p/good.py")])
        marker.arm("/p/crasher.py")

        applied = marker.apply_to(plugins)

        assert applied == ["/p/crasher.py"]
        assert plugins.blacklist == ["/p/crasher.py"]
        assert [d.file_or_identifier for d in plugins] == ["/p/good.py"]
        assert not marker.is_armed()

    def test_apply_without_pending_changes_nothing(self, tmp_path: Path) -> None:
        marker = CrashMarker(tmp_path / "DeadPlugins.txt")
        plugins = PluginList()
        assert marker.apply_to(plugins) == []
        assert plugins.blacklist == []

    def test_blank_lines_are_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "DeadPlugins.txt"
        path.write_text("\n/p/a.py\n\n", encoding="utf-8")
        assert CrashMarker(path).pending() == ["/p/a.py"]
