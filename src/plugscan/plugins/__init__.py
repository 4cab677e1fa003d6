"""Plugin formats, the known plugin list and probing.

Probing a candidate loads third-party code; it is only ever done inside
the isolated scan worker (see ``plugscan.scanner``).
"""

from plugscan.plugins.directory_scanner import DirectoryScanner
from plugscan.plugins.formats import (
    BundlePluginFormat,
    FormatManager,
    NativePluginFormat,
    PluginFormat,
    PythonPluginFormat,
)
from plugscan.plugins.interface import AudioPlugin
from plugscan.plugins.known_list import PluginList
from plugscan.plugins.manifest import PluginManifest
from plugscan.plugins.pedal import CrashMarker

__all__ = [
    "AudioPlugin",
    "BundlePluginFormat",
    "CrashMarker",
    "DirectoryScanner",
    "FormatManager",
    "NativePluginFormat",
    "PluginFormat",
    "PluginList",
    "PluginManifest",
    "PythonPluginFormat",
]
