"""Tests for settings loading and well-known locations."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from plugscan.core.config import (
    DATA_DIR_ENV,
    WORKER_FLAG,
    ScannerSettings,
    default_data_dir,
    load_settings,
    save_settings,
)
from plugscan.core.errors import ValidationError


class TestDefaults:
    """Tests for default settings and paths."""

    def test_default_values(self, data_dir: Path) -> None:
        settings = ScannerSettings(data_dir=data_dir)
        assert settings.scan_timeout == 10.0
        assert settings.health_check_interval == 0.25
        assert settings.quit_timeout == 5.0
        assert settings.max_relaunch_attempts == 2

    def test_file_locations(self, data_dir: Path) -> None:
        settings = ScannerSettings(data_dir=data_dir)
        assert settings.scan_list_file == data_dir / "Temp" / "ScannerPluginList.json"
        assert settings.dead_plugins_file == data_dir / "DeadPlugins.txt"
        assert settings.user_plugins_file == data_dir / "plugins.json"

    def test_data_dir_from_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(DATA_DIR_ENV, str(tmp_path / "elsewhere"))
        assert default_data_dir() == tmp_path / "elsewhere"

    def test_data_dir_defaults_to_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(DATA_DIR_ENV, raising=False)
        assert default_data_dir() == Path.home() / ".plugscan"

    def test_worker_command(self, data_dir: Path) -> None:
        settings = ScannerSettings(data_dir=data_dir)
        assert settings.worker_args() == [sys.executable, "-m", "plugscan", WORKER_FLAG]

        custom = ScannerSettings(data_dir=data_dir, worker_command=["/opt/worker", "-x"])
        assert custom.worker_args() == ["/opt/worker", "-x"]

    def test_worker_env_pins_data_dir(self, data_dir: Path) -> None:
        env = ScannerSettings(data_dir=data_dir).worker_env()
        assert env[DATA_DIR_ENV] == str(data_dir)

    def test_relaunch_attempts_must_be_positive(self, data_dir: Path) -> None:
        import pydantic

        with pytest.raises(pydantic.ValidationError):
            ScannerSettings(data_dir=data_dir, max_relaunch_attempts=0)


class TestLoadSettings:
    """Tests for settings.yaml handling."""

    def test_missing_file_gives_defaults(self, data_dir: Path) -> None:
        settings = load_settings(data_dir)
        assert settings.data_dir == data_dir
        assert settings.search_paths == {}

    def test_loads_yaml(self, data_dir: Path) -> None:
        (data_dir / "settings.yaml").write_text(
            "scan_timeout: 30\n"
            "search_paths:\n"
            "  Python:\n"
            "    - ~/my-plugins\n",
            encoding="utf-8",
        )

        settings = load_settings(data_dir)

        assert settings.scan_timeout == 30
        assert settings.search_paths_for("Python") == [Path.home() / "my-plugins"]
        assert settings.search_paths_for("Bundle") == []

    def test_empty_file_gives_defaults(self, data_dir: Path) -> None:
        (data_dir / "settings.yaml").write_text("", encoding="utf-8")
        assert load_settings(data_dir).scan_timeout == 10.0

    @pytest.mark.parametrize(
        ("content", "field"),
        [
            ("scan_timeout: -1\n", "scan_timeout"),
            ("unknown_option: 1\n", "unknown_option"),
        ],
    )
    def test_invalid_values(self, data_dir: Path, content: str, field: str) -> None:
        (data_dir / "settings.yaml").write_text(content, encoding="utf-8")
        with pytest.raises(ValidationError) as exc_info:
            load_settings(data_dir)
        assert exc_info.value.error.context == {"field": field}

    def test_invalid_yaml(self, data_dir: Path) -> None:
        (data_dir / "settings.yaml").write_text("scan_timeout: [1,\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="Invalid YAML"):
            load_settings(data_dir)

    def test_non_mapping_document(self, data_dir: Path) -> None:
        (data_dir / "settings.yaml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValidationError, match="mapping"):
            load_settings(data_dir)

    def test_save_round_trip(self, data_dir: Path) -> None:
        settings = ScannerSettings(
            data_dir=data_dir,
            scan_timeout=20.0,
            search_paths={"Python": [Path("/opt/plugins")]},
        )

        path = save_settings(settings)
        loaded = load_settings(data_dir)

        assert "data_dir" not in path.read_text(encoding="utf-8")
        assert "quit_timeout" not in path.read_text(encoding="utf-8")
        assert loaded.scan_timeout == 20.0
        assert loaded.search_paths == {"Python": [Path("/opt/plugins")]}
