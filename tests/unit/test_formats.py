"""Tests for plugin formats, the format manager and plugin loading."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from plugscan.core.errors import FormatNotFoundError, ProbeError, ValidationError
from plugscan.plugins.formats import (
    BundlePluginFormat,
    FormatManager,
    NativePluginFormat,
    PluginFormat,
    PythonPluginFormat,
)
from plugscan.plugins.loader import load_object
from plugscan.plugins.manifest import PluginManifest


class TestPythonPluginFormat:
    """Tests for single-file Python plugins."""

    def test_finds_python_files(
        self, plugin_dir: Path, make_python_plugin: Callable[..., Path]
    ) -> None:
        make_python_plugin(plugin_dir, "reverb")
        sub = plugin_dir / "more"
        sub.mkdir()
        make_python_plugin(sub, "delay")
        (plugin_dir / "_private.py").write_text("", encoding="utf-8")
        (plugin_dir / "notes.txt").write_text("", encoding="utf-8")

        candidates = PythonPluginFormat().search_paths_for_plugins([plugin_dir])

        assert candidates == sorted(
            [str(plugin_dir / "more" / "delay.py"), str(plugin_dir / "reverb.py")]
        )

    def test_non_recursive_search(
        self, plugin_dir: Path, make_python_plugin: Callable[..., Path]
    ) -> None:
        make_python_plugin(plugin_dir, "reverb")
        sub = plugin_dir / "more"
        sub.mkdir()
        make_python_plugin(sub, "delay")

        candidates = PythonPluginFormat().search_paths_for_plugins([plugin_dir], recursive=False)

        assert candidates == [str(plugin_dir / "reverb.py")]

    def test_skips_bundle_directories(
        self, plugin_dir: Path, make_bundle: Callable[..., Path]
    ) -> None:
        make_bundle(plugin_dir, "tape")
        assert PythonPluginFormat().search_paths_for_plugins([plugin_dir]) == []

    def test_missing_search_path_is_skipped(self, tmp_path: Path) -> None:
        assert PythonPluginFormat().search_paths_for_plugins([tmp_path / "nope"]) == []

    def test_describes_plugin(
        self, plugin_dir: Path, make_python_plugin: Callable[..., Path]
    ) -> None:
        path = make_python_plugin(plugin_dir, "chorus", name="Chorus", category="Modulation")

        [desc] = PythonPluginFormat().find_descriptions(str(path))

        assert desc.format_name == "Python"
        assert desc.file_or_identifier == str(path)
        assert desc.name == "Chorus"
        assert desc.manufacturer == "Test Audio"
        assert desc.category == "Modulation"
        assert desc.num_inputs == 2
        assert desc.metadata == {"class": "Chorus"}

    def test_import_error_is_probe_error(
        self, plugin_dir: Path, make_python_plugin: Callable[..., Path]
    ) -> None:
        path = make_python_plugin(plugin_dir, "broken", prelude='raise RuntimeError("boom")')
        with pytest.raises(ProbeError, match="boom"):
            PythonPluginFormat().find_descriptions(str(path))

    def test_module_without_plugin_class(self, plugin_dir: Path) -> None:
        path = plugin_dir / "helper.py"
        path.write_text("VALUE = 1\n", encoding="utf-8")
        with pytest.raises(ProbeError, match="No AudioPlugin subclass"):
            PythonPluginFormat().find_descriptions(str(path))

    def test_invalid_metadata_is_probe_error(
        self, plugin_dir: Path, make_python_plugin: Callable[..., Path]
    ) -> None:
        path = make_python_plugin(plugin_dir, "nameless", name="")
        with pytest.raises(ProbeError, match="Validation errors"):
            PythonPluginFormat().find_descriptions(str(path))


class TestBundlePluginFormat:
    """Tests for manifest-described bundles."""

    def test_describes_bundle_from_manifest(
        self, plugin_dir: Path, make_bundle: Callable[..., Path]
    ) -> None:
        bundle = make_bundle(plugin_dir, "tape", tags=["vintage"])
        plugin_format = BundlePluginFormat()

        assert plugin_format.search_paths_for_plugins([plugin_dir]) == [str(bundle)]
        [desc] = plugin_format.find_descriptions(str(bundle))

        assert desc.format_name == "Bundle"
        assert desc.name == "tape"
        assert desc.version == "2.0.0"
        assert desc.category == "Delay"
        assert desc.metadata["tags"] == ["vintage"]

    def test_invalid_manifest(self, plugin_dir: Path, make_bundle: Callable[..., Path]) -> None:
        bundle = make_bundle(plugin_dir, "tape", version="latest")
        with pytest.raises(ProbeError, match="Invalid manifest"):
            BundlePluginFormat().find_descriptions(str(bundle))

    def test_unreadable_manifest(self, plugin_dir: Path) -> None:
        bundle = plugin_dir / "junk"
        bundle.mkdir()
        (bundle / "plugin.json").write_text("{", encoding="utf-8")
        with pytest.raises(ProbeError, match="Unreadable manifest"):
            BundlePluginFormat().find_descriptions(str(bundle))

    def test_unsupported_platform(
        self, plugin_dir: Path, make_bundle: Callable[..., Path]
    ) -> None:
        other = [p for p in ("windows", "linux", "darwin") if p != _current_platform()]
        bundle = make_bundle(plugin_dir, "tape", supported_platforms=other[:1])
        with pytest.raises(ProbeError, match="platform"):
            BundlePluginFormat().find_descriptions(str(bundle))

    def test_missing_plugin_class(
        self, plugin_dir: Path, make_bundle: Callable[..., Path]
    ) -> None:
        bundle = make_bundle(plugin_dir, "tape", plugin_class="Missing")
        with pytest.raises(ProbeError, match="Plugin class not found"):
            BundlePluginFormat().find_descriptions(str(bundle))


def _current_platform() -> str:
    from plugscan.plugins.manifest import current_platform

    return current_platform()


class TestPluginManifest:
    """Tests for PluginManifest validation."""

    def test_defaults(self) -> None:
        manifest = PluginManifest(
            name="Tape", version="1.0.0", entry_point="main.py", plugin_class="Main"
        )
        assert manifest.supports_platform("linux")
        assert manifest.num_inputs == 2

    def test_rejects_negative_channels(self) -> None:
        import pydantic

        with pytest.raises(pydantic.ValidationError):
            PluginManifest(
                name="Tape",
                version="1.0.0",
                entry_point="main.py",
                plugin_class="Main",
                num_outputs=-1,
            )


class TestNativePluginFormat:
    """Tests for shared-library plugins that do not need a compiler."""

    def test_candidates_by_suffix(self, plugin_dir: Path) -> None:
        suffix = NativePluginFormat.library_suffixes()[0]
        (plugin_dir / f"libverb{suffix}").write_bytes(b"")
        (plugin_dir / "readme.md").write_text("", encoding="utf-8")

        candidates = NativePluginFormat().search_paths_for_plugins([plugin_dir])

        assert candidates == [str(plugin_dir / f"libverb{suffix}")]

    def test_unloadable_library_is_probe_error(self, plugin_dir: Path) -> None:
        suffix = NativePluginFormat.library_suffixes()[0]
        library = plugin_dir / f"libfake{suffix}"
        library.write_bytes(b"not a shared library")
        with pytest.raises(ProbeError, match="Cannot load library"):
            NativePluginFormat().find_descriptions(str(library))


class DummyFormat(PluginFormat):
    """Format used to test registration by reference."""

    @property
    def name(self) -> str:
        return "Dummy"

    @property
    def can_scan_for_plugins(self) -> bool:
        return False

    def file_might_contain_plugin(self, path: Path) -> bool:
        return False

    def find_descriptions(self, identifier: str) -> list:
        return []


class TestFormatManager:
    """Tests for FormatManager."""

    def test_default_formats(self, data_dir: Path) -> None:
        manager = FormatManager()
        manager.add_default_formats(data_dir)

        assert manager.names == ["Python", "Bundle", "Native"]
        assert data_dir / "plugins" in manager.require("Python").default_locations_to_search()

    def test_require_unknown_format(self) -> None:
        manager = FormatManager()
        manager.add_format(PythonPluginFormat())
        with pytest.raises(FormatNotFoundError) as exc_info:
            manager.require("VST3")
        assert exc_info.value.error.context["available"] == ["Python"]
        assert manager.get("VST3") is None

    def test_formats_from_references(self) -> None:
        manager = FormatManager()
        manager.add_formats_from_references([f"{__name__}:DummyFormat"])

        assert manager.names == ["Dummy"]
        assert manager.scannable_names() == []

    @pytest.mark.parametrize(
        "reference",
        ["no_colon", "plugscan_missing_module:Format", "plugscan.plugins.formats:Missing"],
    )
    def test_bad_references(self, reference: str) -> None:
        with pytest.raises(ValidationError):
            FormatManager().add_formats_from_references([reference])

    def test_reference_to_non_format_class(self) -> None:
        with pytest.raises(ValidationError, match="not a PluginFormat"):
            FormatManager().add_formats_from_references(["pathlib:Path"])

    def test_load_object_resolves_attributes(self) -> None:
        assert load_object("os.path:join") is os.path.join
