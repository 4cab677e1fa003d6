"""Import helpers for plugin code.

Importing a plugin runs arbitrary third-party code, so these helpers are
only called from the scan worker (or for trusted format classes named in
the settings).
"""

import hashlib
import importlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

from plugscan.core.errors import ProbeError, ValidationError
from plugscan.plugins.interface import AudioPlugin


def import_module_from_path(path: Path, identifier: str | None = None) -> ModuleType:
    """Import a Python source file as a private module.

    Args:
        path: Source file to execute
        identifier: Identifier used in error messages (defaults to path)

    Raises:
        ProbeError: If the file cannot be imported
    """
    identifier = identifier or str(path)
    if not path.is_file():
        raise ProbeError(identifier, f"Entry point not found: {path}")

    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    module_name = f"plugscan_probe_{path.stem}_{digest}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ProbeError(identifier, "Failed to create module spec")

    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(spec.name, None)
        raise ProbeError(identifier, f"Import failed: {type(e).__name__}: {e}")

    return module


def find_plugin_class(
    module: ModuleType,
    identifier: str,
    class_name: str | None = None,
) -> type[AudioPlugin]:
    """Locate the AudioPlugin subclass a module provides.

    Without ``class_name`` the first subclass defined in the module is used.

    Raises:
        ProbeError: If no suitable class exists
    """
    if class_name:
        plugin_class = getattr(module, class_name, None)
        if plugin_class is None:
            raise ProbeError(identifier, f"Plugin class not found: {class_name}")
        if not (isinstance(plugin_class, type) and issubclass(plugin_class, AudioPlugin)):
            raise ProbeError(identifier, f"{class_name} is not an AudioPlugin subclass")
        return plugin_class

    for value in vars(module).values():
        if (
            isinstance(value, type)
            and issubclass(value, AudioPlugin)
            and value is not AudioPlugin
            and value.__module__ == module.__name__
        ):
            return value

    raise ProbeError(identifier, "No AudioPlugin subclass defined")


def instantiate_plugin(plugin_class: type[AudioPlugin], identifier: str) -> AudioPlugin:
    """Instantiate and validate a plugin class.

    Raises:
        ProbeError: If construction or validation fails
    """
    try:
        plugin = plugin_class()
    except Exception as e:
        raise ProbeError(identifier, f"Instantiation failed: {type(e).__name__}: {e}")

    errors = plugin.validate()
    if errors:
        raise ProbeError(identifier, f"Validation errors: {errors}")
    return plugin


def load_object(reference: str) -> Any:
    """Resolve a ``module:attribute`` reference.

    Raises:
        ValidationError: If the reference is malformed or cannot be imported
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValidationError(
            f"Expected 'module:Class', got '{reference}'", field="extra_formats"
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValidationError(f"Cannot import {module_name}: {e}", field="extra_formats")

    obj = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise ValidationError(f"{module_name} has no attribute {attr}", field="extra_formats")
    return obj
