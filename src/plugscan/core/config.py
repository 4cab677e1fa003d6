"""Scanner settings and well-known data locations.

Settings live in ``<data_dir>/settings.yaml``. The data directory itself
is process-wide: it comes from ``PLUGSCAN_DATA_DIR`` or defaults to
``~/.plugscan``, and the host passes it to the scan worker through the
same environment variable so both sides agree on the shared files.
"""

import os
import sys
from pathlib import Path

import pydantic
import yaml
from pydantic import BaseModel, Field

from plugscan.core.errors import ValidationError

DATA_DIR_ENV = "PLUGSCAN_DATA_DIR"
WORKER_FLAG = "--scan-worker"

SETTINGS_FILENAME = "settings.yaml"
SCAN_LIST_FILENAME = "ScannerPluginList.json"
DEAD_PLUGINS_FILENAME = "DeadPlugins.txt"
USER_PLUGINS_FILENAME = "plugins.json"


def default_data_dir() -> Path:
    """Resolve the data directory from the environment."""
    env = os.environ.get(DATA_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".plugscan"


class ScannerSettings(BaseModel):
    """Settings shared by the host and the scan worker."""

    data_dir: Path = Field(default_factory=default_data_dir)

    scan_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds without any worker message before it is considered hung",
    )
    health_check_interval: float = Field(
        default=0.25,
        gt=0,
        description="Seconds between supervisor health checks",
    )
    quit_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds a worker may take to exit after 'quit' before it is killed",
    )
    max_relaunch_attempts: int = Field(
        default=2,
        ge=1,
        description="Consecutive crashes without progress before a scan is abandoned",
    )

    search_paths: dict[str, list[Path]] = Field(
        default_factory=dict,
        description="Extra search locations per format name",
    )
    extra_formats: list[str] = Field(
        default_factory=list,
        description="Additional PluginFormat classes as 'module:Class'",
    )
    worker_command: list[str] | None = Field(
        default=None,
        description="Override for the command that starts the scan worker",
    )

    model_config = {"extra": "forbid"}

    @property
    def scan_list_file(self) -> Path:
        """Backing file shared between host and worker during a scan."""
        return self.data_dir / "Temp" / SCAN_LIST_FILENAME

    @property
    def dead_plugins_file(self) -> Path:
        """Crash marker naming the plugin currently being probed."""
        return self.data_dir / DEAD_PLUGINS_FILENAME

    @property
    def user_plugins_file(self) -> Path:
        """Host's persisted list of known plugins."""
        return self.data_dir / USER_PLUGINS_FILENAME

    @property
    def settings_file(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    def worker_args(self) -> list[str]:
        """Command line that re-invokes this program in worker mode."""
        if self.worker_command:
            return list(self.worker_command)
        return [sys.executable, "-m", "plugscan", WORKER_FLAG]

    def worker_env(self) -> dict[str, str]:
        """Environment for the worker, pinned to this data directory."""
        env = dict(os.environ)
        env[DATA_DIR_ENV] = str(self.data_dir)
        return env

    def search_paths_for(self, format_name: str) -> list[Path]:
        """Configured search locations for a format."""
        return [p.expanduser() for p in self.search_paths.get(format_name, [])]


def load_settings(data_dir: Path | None = None) -> ScannerSettings:
    """Load settings from the data directory.

    Args:
        data_dir: Data directory (defaults to the environment/home default)

    Returns:
        ScannerSettings, defaults when no settings file exists

    Raises:
        ValidationError: If the settings file is malformed
    """
    data_dir = data_dir or default_data_dir()
    settings_file = data_dir / SETTINGS_FILENAME

    data: dict = {}
    if settings_file.exists():
        try:
            loaded = yaml.safe_load(settings_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid YAML in {settings_file}: {e}")
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ValidationError(f"{settings_file} must contain a mapping")
        data = loaded

    data["data_dir"] = data_dir
    try:
        return ScannerSettings(**data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid setting '{field}': {first['msg']}", field=field)


def save_settings(settings: ScannerSettings) -> Path:
    """Write settings back to ``settings.yaml`` (the data_dir is implied)."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json", exclude={"data_dir"}, exclude_defaults=True)
    settings.settings_file.write_text(
        yaml.safe_dump(data, sort_keys=True), encoding="utf-8"
    )
    return settings.settings_file
