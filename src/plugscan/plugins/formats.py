"""Plugin formats and the format manager.

A format knows where its plugins usually live, which files might contain
one, and how to probe a single candidate into PluginDescriptions. Probing
loads third-party code and therefore only happens inside the scan worker.
"""

import ctypes
import json
import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

import pydantic

from plugscan.core import logging as log
from plugscan.core.errors import FormatNotFoundError, ProbeError, ValidationError
from plugscan.models.description import PluginDescription
from plugscan.plugins.loader import (
    find_plugin_class,
    import_module_from_path,
    instantiate_plugin,
    load_object,
)
from plugscan.plugins.manifest import MANIFEST_FILENAME, PluginManifest


class PluginFormat(ABC):
    """A named family of loadable plugins."""

    def __init__(self, default_locations: Iterable[Path] = ()) -> None:
        self._default_locations = [Path(p) for p in default_locations]

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique format name, used in scan requests."""
        ...

    @property
    def can_scan_for_plugins(self) -> bool:
        """Whether this format takes part in directory scans."""
        return True

    def default_locations_to_search(self) -> list[Path]:
        return list(self._default_locations)

    @abstractmethod
    def file_might_contain_plugin(self, path: Path) -> bool:
        """Cheap check (no loading) whether a path is a candidate."""
        ...

    @abstractmethod
    def find_descriptions(self, identifier: str) -> list[PluginDescription]:
        """Probe one candidate.

        This may execute plugin code. It may raise, hang, or kill the
        process.

        Raises:
            ProbeError: If the candidate is not a usable plugin
        """
        ...

    def does_plugin_still_exist(self, identifier: str) -> bool:
        return Path(identifier).exists()

    def search_paths_for_plugins(
        self,
        search_paths: Iterable[Path],
        recursive: bool = True,
    ) -> list[str]:
        """List candidate identifiers below the given directories.

        Args:
            search_paths: Directories to search; missing ones are skipped
            recursive: Descend into subdirectories

        Returns:
            Sorted, de-duplicated identifiers
        """
        found: dict[str, None] = {}
        for root in search_paths:
            root = Path(root).expanduser()
            if not root.is_dir():
                continue
            for candidate in self._walk(root, recursive):
                found[os.path.abspath(candidate)] = None
        return sorted(found)

    def _walk(self, directory: Path, recursive: bool) -> Iterable[Path]:
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            log.debug(f"Cannot list {directory}: {e}")
            return

        for entry in entries:
            if self.file_might_contain_plugin(entry):
                yield entry
            elif recursive and entry.is_dir() and self.should_descend(entry):
                yield from self._walk(entry, recursive)

    def should_descend(self, directory: Path) -> bool:
        """Whether a recursive search enters ``directory``."""
        return not directory.name.startswith(".") and directory.name != "__pycache__"

    def _description(self, identifier: str, **fields) -> PluginDescription:
        try:
            return PluginDescription(
                format_name=self.name,
                file_or_identifier=identifier,
                **fields,
            )
        except pydantic.ValidationError as e:
            raise ProbeError(identifier, f"Invalid description: {e.error_count()} errors")


class PythonPluginFormat(PluginFormat):
    """Single-file plugins: a ``.py`` module defining an AudioPlugin subclass."""

    @property
    def name(self) -> str:
        return "Python"

    def file_might_contain_plugin(self, path: Path) -> bool:
        return path.suffix == ".py" and path.is_file() and not path.name.startswith("_")

    def should_descend(self, directory: Path) -> bool:
        # Bundle entry points belong to the Bundle format.
        if (directory / MANIFEST_FILENAME).is_file():
            return False
        return super().should_descend(directory)

    def find_descriptions(self, identifier: str) -> list[PluginDescription]:
        module = import_module_from_path(Path(identifier), identifier)
        plugin = instantiate_plugin(find_plugin_class(module, identifier), identifier)
        return [
            self._description(
                identifier,
                metadata={"class": type(plugin).__qualname__},
                **plugin.describe(),
            )
        ]


class BundlePluginFormat(PluginFormat):
    """Directory bundles described by a ``plugin.json`` manifest."""

    @property
    def name(self) -> str:
        return "Bundle"

    def file_might_contain_plugin(self, path: Path) -> bool:
        return path.is_dir() and (path / MANIFEST_FILENAME).is_file()

    def load_manifest(self, bundle: Path) -> PluginManifest:
        manifest_file = bundle / MANIFEST_FILENAME
        try:
            data = json.loads(manifest_file.read_text(encoding="utf-8"))
            return PluginManifest(**data)
        except (OSError, json.JSONDecodeError) as e:
            raise ProbeError(str(bundle), f"Unreadable manifest: {e}")
        except pydantic.ValidationError as e:
            raise ProbeError(str(bundle), f"Invalid manifest: {e.error_count()} errors")
        except TypeError:
            raise ProbeError(str(bundle), "Manifest must be a JSON object")

    def find_descriptions(self, identifier: str) -> list[PluginDescription]:
        bundle = Path(identifier)
        manifest = self.load_manifest(bundle)

        if not manifest.supports_platform():
            raise ProbeError(identifier, "Bundle does not support this platform")

        module = import_module_from_path(bundle / manifest.entry_point, identifier)
        plugin_class = find_plugin_class(module, identifier, manifest.plugin_class)
        instantiate_plugin(plugin_class, identifier)

        return [
            self._description(
                identifier,
                name=manifest.name,
                descriptive_name=manifest.description or manifest.name,
                manufacturer=manifest.manufacturer,
                version=manifest.version,
                category=manifest.category,
                is_instrument=manifest.is_instrument,
                num_inputs=manifest.num_inputs,
                num_outputs=manifest.num_outputs,
                unique_id=manifest.unique_id,
                metadata={
                    "entry_point": manifest.entry_point,
                    "plugin_class": manifest.plugin_class,
                    "tags": manifest.tags,
                },
            )
        ]


class NativePluginFormat(PluginFormat):
    """Shared libraries exporting ``plugscan_describe``.

    The exported function takes no arguments and returns a NUL-terminated
    UTF-8 JSON object with PluginDescription fields.
    """

    ENTRY_SYMBOL = "plugscan_describe"

    @property
    def name(self) -> str:
        return "Native"

    @staticmethod
    def library_suffixes() -> tuple[str, ...]:
        if sys.platform.startswith("win"):
            return (".dll",)
        if sys.platform == "darwin":
            return (".dylib", ".so")
        return (".so",)

    def file_might_contain_plugin(self, path: Path) -> bool:
        return path.suffix in self.library_suffixes() and path.is_file()

    def find_descriptions(self, identifier: str) -> list[PluginDescription]:
        try:
            library = ctypes.CDLL(identifier)
        except OSError as e:
            raise ProbeError(identifier, f"Cannot load library: {e}")

        describe = getattr(library, self.ENTRY_SYMBOL, None)
        if describe is None:
            raise ProbeError(identifier, f"Missing symbol {self.ENTRY_SYMBOL}")
        describe.restype = ctypes.c_char_p
        describe.argtypes = []

        raw = describe()
        if not raw:
            raise ProbeError(identifier, f"{self.ENTRY_SYMBOL} returned nothing")

        try:
            fields = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ProbeError(identifier, f"Invalid description JSON: {e}")
        if not isinstance(fields, dict):
            raise ProbeError(identifier, "Description must be a JSON object")

        fields.pop("format_name", None)
        fields.pop("file_or_identifier", None)
        return [self._description(identifier, **fields)]


class FormatManager:
    """Registry of plugin formats available to the host and the worker."""

    def __init__(self) -> None:
        self._formats: dict[str, PluginFormat] = {}

    def add_format(self, plugin_format: PluginFormat) -> None:
        if plugin_format.name in self._formats:
            log.debug(f"Replacing plugin format {plugin_format.name}")
        self._formats[plugin_format.name] = plugin_format

    def add_default_formats(self, data_dir: Path) -> None:
        """Register the built-in formats.

        Args:
            data_dir: Data directory whose ``plugins`` folder is searched by default
        """
        user_dir = data_dir / "plugins"
        self.add_format(PythonPluginFormat([user_dir]))
        self.add_format(BundlePluginFormat([user_dir]))
        self.add_format(
            NativePluginFormat(
                [user_dir, Path("/usr/local/lib/plugscan"), Path("/usr/lib/plugscan")]
            )
        )

    def add_formats_from_references(self, references: Iterable[str]) -> None:
        """Register extra formats named as ``module:Class``.

        Raises:
            ValidationError: If a reference does not name a PluginFormat class
        """
        for reference in references:
            format_class = load_object(reference)
            if not (isinstance(format_class, type) and issubclass(format_class, PluginFormat)):
                raise ValidationError(
                    f"{reference} is not a PluginFormat subclass", field="extra_formats"
                )
            self.add_format(format_class())

    @property
    def formats(self) -> list[PluginFormat]:
        return list(self._formats.values())

    @property
    def names(self) -> list[str]:
        return list(self._formats)

    def scannable_names(self) -> list[str]:
        return [f.name for f in self._formats.values() if f.can_scan_for_plugins]

    def get(self, name: str) -> PluginFormat | None:
        return self._formats.get(name)

    def require(self, name: str) -> PluginFormat:
        """Get a format by name.

        Raises:
            FormatNotFoundError: If no such format is registered
        """
        plugin_format = self._formats.get(name)
        if plugin_format is None:
            raise FormatNotFoundError(name, self.names)
        return plugin_format
